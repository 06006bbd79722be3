"""
Fixed option lists shared by the filters, forms and seed data.
"""

SERVICE_OPTIONS = [
    'Sunday Service',
    'Bible Study',
    'Youth Programs',
    'Community Events',
    'Baptism Services',
    'Wedding Ceremonies',
]

EVENT_TYPES = [
    'Holiday',
    'Bible Study',
    'Community',
    'Worship',
    'Fundraiser',
]

LANGUAGES = [
    'Amharic',
    'English',
    "Ge'ez",
    'Tigrinya',
    'Afaan Oromo',
]

DAYS_OF_WEEK = [
    'Sunday',
    'Monday',
    'Tuesday',
    'Wednesday',
    'Thursday',
    'Friday',
    'Saturday',
]

DEFAULT_REPEAT = 'Every Week'

REPEAT_OPTIONS = [
    DEFAULT_REPEAT,
    'Every 2 Weeks',
    'Monthly',
    'First of Month',
    'Last of Month',
    'Daily',
]
