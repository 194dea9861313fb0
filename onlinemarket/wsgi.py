"""
WSGI config for the online market project.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "onlinemarket.settings")

application = get_wsgi_application()
