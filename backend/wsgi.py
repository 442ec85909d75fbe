# backend/wsgi.py
from invencea import create_app

app = create_app()
