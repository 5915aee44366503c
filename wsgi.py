"""
WSGI entry point for the mail health scanner.

WSGI hosts import this module and look for the ``app`` variable.  The
development server can also be started by running this file directly.

=============================================================================
DEPLOYMENT
=============================================================================

1. INSTALL
     pip install .

2. INITIALISE THE DATABASE
     python init_db.py

   Use an absolute path for SQLite databases:
     DATABASE_URL=sqlite:////srv/mailhealth/instance/mailhealth.db

3. ENVIRONMENT VARIABLES
     SECRET_KEY=<a-long-random-string>
     DATABASE_URL=<sqlalchemy url>
     DNS_RESOLVERS=8.8.8.8,1.1.1.1      (optional)
     RBL_API_URL=<blacklist aggregator>  (optional)
     BLOCKED_DOMAINS=*.gov,example.org   (optional)

4. IDENTITY HEADERS
   The API trusts X-User-Id, X-User-Email and X-User-Tier.  Run it behind
   an authenticating proxy that strips those headers from client requests.

5. CLIENT ADDRESS
   Anonymous quotas are keyed by client IP.  Behind reverse proxies set
   PROXY_FIX_X_FOR to the number of proxies that append to
   X-Forwarded-For; with the default 0 the header is ignored.

=============================================================================
LOCAL DEVELOPMENT
=============================================================================

  export SECRET_KEY=dev-only-not-for-production
  python wsgi.py

The API will be available at http://127.0.0.1:5000/api/v1/

For testing:

  pip install -e ".[test]"
  pytest tests/ -v
"""

from __future__ import annotations

from mailhealth import create_app

app = create_app()

if __name__ == "__main__":
    app.run(debug=True)
