"""
Flask web app: Outlook mail, calendar and contacts for the signed-in user.

Includes:
  - Microsoft Entra ID sign-in via MSAL (see `auth/`)
  - Server-side sessions via Flask-Session (cachelib backend)
  - A per-session, per-user MSAL token cache and silent token acquisition
  - Outlook (Microsoft Graph) pages built on `outlook/`

Run locally with `flask --app app run` (Flask picks up `create_app`), or in
App Service with `gunicorn "app:create_app()"`.
"""

from __future__ import annotations

import os
from typing import Any, Callable

from cachelib import FileSystemCache
from dotenv import load_dotenv
from flask import Flask, current_app, redirect, render_template, request, url_for
from flask_session import Session
from werkzeug.middleware.proxy_fix import ProxyFix

from app_logging import configure_logging
from auth.acquisition import SilentAcquisitionFlow
from auth.config import init_auth
from auth.gate import current_identity, init_gate, login_required
from auth.models import AcquisitionFailure, AcquisitionResult
from auth.routes import auth_bp
from auth.token_store import init_token_store, store_for_request
from outlook.client import DEFAULT_BASE_URL, NotAuthenticated, OutlookApiError, OutlookClient

__version__ = "1.0.0"


def create_app(test_config: dict[str, Any] | None = None) -> Flask:
    load_dotenv()
    configure_logging()

    app = Flask(__name__)

    # Respect proxy headers (App Service sits behind a reverse proxy).
    # This makes url_for(..., _external=True) generate correct https URLs.
    app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)  # type: ignore[assignment]

    app.config.update(
        SECRET_KEY=os.environ.get("FLASK_SECRET_KEY", ""),
        SESSION_TYPE="cachelib",
        SESSION_PERMANENT=False,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        SESSION_COOKIE_SECURE=os.environ.get("FLASK_COOKIE_SECURE", "true").lower() == "true",
        TOKEN_CACHE_TYPE=os.environ.get("TOKEN_CACHE_TYPE", "filesystem"),
        TOKEN_CACHE_DIR=os.environ.get("TOKEN_CACHE_DIR"),
        TOKEN_CACHE_THRESHOLD=int(os.environ.get("TOKEN_CACHE_THRESHOLD", "500")),
        REDIS_URL=os.environ.get("REDIS_URL"),
        OUTLOOK_API_BASE=os.environ.get("OUTLOOK_API_BASE", DEFAULT_BASE_URL),
        OUTLOOK_API_TIMEOUT=float(os.environ.get("OUTLOOK_API_TIMEOUT", "30")),
    )
    if test_config:
        app.config.update(test_config)

    # ---- Security / Sessions ----
    if not app.config.get("SECRET_KEY"):
        raise RuntimeError(
            "Missing FLASK_SECRET_KEY. Set it as an environment variable in App Service "
            "(Configuration) or in your local environment before starting."
        )

    if app.config.get("SESSION_CACHELIB") is None:
        session_dir = os.environ.get("FLASK_SESSION_DIR") or os.path.join(os.getcwd(), ".flask_session")
        os.makedirs(session_dir, exist_ok=True)
        app.config["SESSION_CACHELIB"] = FileSystemCache(session_dir, threshold=500, mode=0o600)
    Session(app)

    # ---- Authentication ----
    settings = init_auth(app, app.config.get("AUTH_SETTINGS"))
    init_token_store(app)
    app.extensions["acquisition_flow"] = SilentAcquisitionFlow(
        settings, client_factory=app.config.get("MSAL_CLIENT_FACTORY")
    )
    init_gate(app)
    app.register_blueprint(auth_bp)

    @app.context_processor
    def inject_user():  # type: ignore[no-untyped-def]
        """Make the signed-in user available to all templates as `current_user`."""
        return {"current_user": current_identity(), "version": __version__}

    register_routes(app)
    return app


def _acquire_token() -> AcquisitionResult:
    identity = current_identity()
    if identity is None:
        return AcquisitionResult.failed(AcquisitionFailure.NO_CACHE, "Not signed in.")
    flow: SilentAcquisitionFlow = current_app.extensions["acquisition_flow"]
    return flow.acquire(identity.subject, store_for_request())


def _outlook_client(access_token: str) -> OutlookClient:
    # One acquisition per page request; every Graph call reuses its token.
    return OutlookClient(
        lambda: access_token,
        base_url=current_app.config["OUTLOOK_API_BASE"],
        timeout=current_app.config["OUTLOOK_API_TIMEOUT"],
        session=current_app.config.get("OUTLOOK_HTTP_SESSION"),
    )


def _outlook_page(fetch: Callable[[OutlookClient], list], template: str, title: str, error_message: str):  # type: ignore[no-untyped-def]
    result = _acquire_token()
    if not result.ok:
        if result.failure is None or result.failure.requires_sign_in:
            # If there's no token in the session, go back home.
            return redirect(url_for("index"))
        return redirect(url_for("error", message=result.message, debug=result.debug))

    client = _outlook_client(result.access_token)
    try:
        client.user_email()
        items = fetch(client)
    except NotAuthenticated:
        return redirect(url_for("index"))
    except OutlookApiError as exc:
        return redirect(url_for("error", message=error_message, debug=exc.debug))

    return render_template(template, title=title, items=items)


def register_routes(app: Flask) -> None:
    @app.route("/")
    def index():  # type: ignore[no-untyped-def]
        return render_template("index.html", title="Home")

    @app.route("/inbox")
    @login_required
    def inbox():  # type: ignore[no-untyped-def]
        return _outlook_page(lambda c: c.messages(), "inbox.html", "Inbox", "ERROR retrieving messages")

    @app.route("/calendar")
    @login_required
    def calendar():  # type: ignore[no-untyped-def]
        return _outlook_page(lambda c: c.events(), "calendar.html", "Calendar", "ERROR retrieving events")

    @app.route("/contacts")
    @login_required
    def contacts():  # type: ignore[no-untyped-def]
        return _outlook_page(lambda c: c.contacts(), "contacts.html", "Contacts", "ERROR retrieving contacts")

    @app.route("/about")
    def about():  # type: ignore[no-untyped-def]
        return render_template("about.html", title="About", message="Your application description page.")

    @app.route("/contact")
    def contact():  # type: ignore[no-untyped-def]
        return render_template("about.html", title="Contact", message="Your contact page.")

    @app.route("/error")
    def error():  # type: ignore[no-untyped-def]
        return render_template(
            "error.html",
            title="Error",
            message=request.args.get("message", ""),
            debug=request.args.get("debug", ""),
        )


if __name__ == "__main__":
    create_app().run(debug=True, port=5050)
