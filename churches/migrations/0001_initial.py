import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Church',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(help_text='Official name of the church', max_length=200)),
                ('description', models.TextField(blank=True)),
                ('street_address', models.CharField(help_text='Street address of the church', max_length=300)),
                ('city', models.CharField(help_text='City where the church is located', max_length=100)),
                ('state', models.CharField(help_text='State where the church is located', max_length=50)),
                ('zip_code', models.CharField(blank=True, help_text='ZIP code of the church location', max_length=10)),
                ('latitude', models.DecimalField(blank=True, decimal_places=7, help_text='Latitude coordinate (-90 to 90)', max_digits=10, null=True, validators=[django.core.validators.MinValueValidator(-90.0), django.core.validators.MaxValueValidator(90.0)])),
                ('longitude', models.DecimalField(blank=True, decimal_places=7, help_text='Longitude coordinate (-180 to 180)', max_digits=10, null=True, validators=[django.core.validators.MinValueValidator(-180.0), django.core.validators.MaxValueValidator(180.0)])),
                ('phone', models.CharField(blank=True, help_text='Church phone number', max_length=20)),
                ('image_url', models.CharField(blank=True, max_length=500)),
                ('interior_image_url', models.CharField(blank=True, max_length=500)),
                ('members', models.PositiveIntegerField(default=0)),
                ('services', models.JSONField(blank=True, default=list, help_text="Offered service categories, e.g. ['Sunday Service', 'Bible Study']")),
                ('service_schedule', models.JSONField(blank=True, default=list, help_text='List of {day, time, description} entries')),
                ('languages', models.JSONField(blank=True, default=list, help_text='Languages spoken during services')),
                ('has_english_service', models.BooleanField(default=False)),
                ('has_parking', models.BooleanField(default=False)),
                ('wheelchair_accessible', models.BooleanField(default=False)),
                ('has_school', models.BooleanField(default=False, help_text='Sunday school or cultural school')),
                ('donation_zelle', models.CharField(blank=True, max_length=200)),
                ('donation_website', models.URLField(blank=True)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('approved', 'Approved'), ('rejected', 'Rejected')], db_index=True, default='pending', max_length=10)),
                ('is_verified', models.BooleanField(default=False)),
                ('verification_document_url', models.CharField(blank=True, max_length=500)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('admin', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='owned_churches', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Church',
                'verbose_name_plural': 'Churches',
                'ordering': ['name'],
                'indexes': [
                    models.Index(fields=['state', 'city'], name='church_state_city_idx'),
                    models.Index(fields=['latitude', 'longitude'], name='church_lat_lng_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ClergyMember',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=200)),
                ('role', models.CharField(help_text='e.g. "Head Priest", "Deacon"', max_length=100)),
                ('image_url', models.CharField(blank=True, max_length=500)),
                ('church', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='clergy', to='churches.church')),
            ],
            options={
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='ChurchEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('title', models.CharField(max_length=200)),
                ('type', models.CharField(help_text='e.g. "Holiday", "Bible Study"', max_length=50)),
                ('date', models.DateTimeField(db_index=True)),
                ('location', models.CharField(blank=True, max_length=300)),
                ('description', models.TextField(blank=True)),
                ('image_url', models.CharField(blank=True, max_length=500)),
                ('church_name', models.CharField(blank=True, max_length=200)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('church', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='events', to='churches.church')),
            ],
            options={
                'ordering': ['date'],
            },
        ),
        migrations.CreateModel(
            name='Profile',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('display_name', models.CharField(blank=True, max_length=200)),
                ('role', models.CharField(choices=[('user', 'User'), ('church_admin', 'Church admin'), ('super_admin', 'Super admin')], default='user', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='profile', to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name='ChurchAdmin',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('church', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='admin_links', to='churches.church')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='church_admin_links', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'constraints': [models.UniqueConstraint(fields=('user', 'church'), name='unique_church_admin')],
            },
        ),
        migrations.CreateModel(
            name='FollowedChurch',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('church', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='followers', to='churches.church')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='followed_churches', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'constraints': [models.UniqueConstraint(fields=('user', 'church'), name='unique_followed_church')],
            },
        ),
    ]
