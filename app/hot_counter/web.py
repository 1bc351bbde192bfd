import logging
import platform
from http import HTTPStatus
from typing import Optional

from flask import Flask, Response, render_template, request
from werkzeug.exceptions import MethodNotAllowed

from . import __version__
from .config import Config, DESCRIPTION
from .logs import SERVICE_NAME, log_json
from .sessions import SESSION_LIFETIME, SessionStore
from .state import GlobalCounter

logger = logging.getLogger(SERVICE_NAME)

USER_COUNT_KEY = "count"


def _plain(body: str, status: int = 200) -> Response:
    return Response(body, status=status, mimetype="text/plain")


def create_app(cfg: Optional[Config] = None, counter: Optional[GlobalCounter] = None) -> Flask:
    cfg = cfg or Config()
    counter = counter or GlobalCounter()
    store = SessionStore()

    app = Flask(__name__, static_folder="assets", static_url_path="/assets")
    app.config.update(
        SECRET_KEY=cfg.secret_key,
        PERMANENT_SESSION_LIFETIME=SESSION_LIFETIME,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
    )

    def render_page() -> str:
        return render_template(
            "page.html",
            global_count=counter.snapshot(),
            user_count=store.get(USER_COUNT_KEY),
        )

    def index():
        log_json(logger.info, "request", method=request.method, path=request.path)

        # the rule accepts HEAD alongside GET; the page answers only GET and POST
        if request.method == "HEAD":
            raise MethodNotAllowed(valid_methods=["GET", "POST"])

        if request.method == "POST":
            if "global" in request.form:
                counter.increment()
            if "user" in request.form:
                store.put(USER_COUNT_KEY, store.get(USER_COUNT_KEY) + 1)

        return render_page()

    def healthz():
        return _plain("ok")

    def version():
        return {
            "service": SERVICE_NAME,
            "version": __version__,
            "build": cfg.build,
            "desc": DESCRIPTION,
            "python": platform.python_version(),
        }, 200

    app.add_url_rule("/", "index", index, methods=["GET", "POST"], provide_automatic_options=False)
    any_method = {cfg.health_path: healthz, cfg.version_path: version}

    @app.before_request
    def answer_any_method():
        # health and version answer every method, including ones routing rejects
        view = any_method.get(request.path)
        if view is not None:
            return view()

    @app.errorhandler(MethodNotAllowed)
    def method_not_allowed(e: MethodNotAllowed):
        status = HTTPStatus.METHOD_NOT_ALLOWED
        resp = _plain(f"{status.phrase}\n", status.value)
        resp.headers["X-Content-Type-Options"] = "nosniff"
        if e.valid_methods:
            resp.headers["Allow"] = ", ".join(sorted(e.valid_methods))
        return resp

    return app
