"""
WSGI config for the Church Finder project.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'church_finder.settings')

application = get_wsgi_application()
