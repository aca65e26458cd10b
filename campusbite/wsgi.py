"""
WSGI config for the campusbite project.
"""
import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "campusbite.settings")

application = get_wsgi_application()
