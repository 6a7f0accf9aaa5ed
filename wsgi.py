"""
WSGI entry point for the mail authentication checker.

WSGI hosts import this module and look for the ``app`` variable.  The
development server can also be started by running this file directly:

  python wsgi.py

The API is then available at http://127.0.0.1:5000/api/v1/health

Environment variables (see mailauth/config.py):

  DNS_SETTINGS_PATH      JSON document selecting the DoH backend
  PROVIDER_CATALOG_PATH  directory of mail provider JSON documents
  CHECK_CONCURRENCY      domains checked simultaneously by batch runs
"""

from __future__ import annotations

from mailauth import create_app

app = create_app()

if __name__ == "__main__":
    app.run(debug=True)
