# top of the gunicorn entry point
import gevent.monkey
gevent.monkey.patch_all()

from app import create_app

app = create_app()
