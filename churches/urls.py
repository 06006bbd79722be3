from django.urls import path
from . import views

app_name = 'churches'

urlpatterns = [
    # Directory
    path('api/churches/', views.ChurchListAPIView.as_view(), name='church-list'),
    path('api/churches/<int:id>/', views.ChurchDetailAPIView.as_view(), name='church-detail'),
    path('api/churches/map/', views.ChurchMapAPIView.as_view(), name='church-map'),
    path('api/churches/stats/', views.church_stats, name='church-stats'),
    path('api/events/', views.EventListAPIView.as_view(), name='event-list'),
    path('api/events/<int:id>/', views.EventDetailAPIView.as_view(), name='event-detail'),
    path('api/options/', views.form_options_api, name='form-options'),

    # External services
    path('api/geocoding/', views.geocoding_api, name='geocoding-api'),
    path('api/assistant/', views.assistant_api, name='assistant-api'),

    # Accounts
    path('api/auth/signup/', views.signup_api, name='auth-signup'),
    path('api/auth/login/', views.login_api, name='auth-login'),
    path('api/auth/logout/', views.logout_api, name='auth-logout'),
    path('api/auth/me/', views.me_api, name='auth-me'),

    # Follows
    path('api/follows/', views.followed_churches_api, name='follow-list'),
    path('api/follows/<int:church_id>/', views.follow_church_api, name='follow-church'),

    # Registration
    path('api/register/', views.registration_state_api, name='register-state'),
    path('api/register/advance/', views.registration_advance_api, name='register-advance'),
    path('api/register/back/', views.registration_back_api, name='register-back'),
    path('api/register/submit/', views.registration_submit_api, name='register-submit'),
    path('api/register/reset/', views.registration_reset_api, name='register-reset'),

    # Church admin
    path('api/my-churches/', views.my_churches_api, name='my-churches'),
    path('api/my-churches/<int:church_id>/', views.my_church_detail_api, name='my-church-detail'),
    path('api/my-churches/<int:church_id>/events/', views.church_events_api, name='my-church-events'),
    path('api/my-churches/<int:church_id>/events/<int:event_id>/', views.church_event_detail_api,
         name='my-church-event-detail'),
    path('api/my-churches/<int:church_id>/clergy/', views.church_clergy_api, name='my-church-clergy'),
    path('api/my-churches/<int:church_id>/clergy/<int:clergy_id>/', views.church_clergy_detail_api,
         name='my-church-clergy-detail'),

    # Super admin
    path('api/admin/churches/', views.AdminChurchListAPIView.as_view(), name='admin-church-list'),
    path('api/admin/churches/<int:church_id>/approve/', views.approve_church_api, name='admin-church-approve'),
    path('api/admin/churches/<int:church_id>/reject/', views.reject_church_api, name='admin-church-reject'),
]
