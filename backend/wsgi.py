# backend/wsgi.py
from minisuper import create_app

app = create_app()
