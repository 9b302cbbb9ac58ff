from __future__ import annotations
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

from flask import Flask, current_app

log = logging.getLogger(__name__)


class BackgroundTasks:
    """Отложенные побочные эффекты (уведомления, биллинг) вне ответа на запрос.

    Задача получает свой app context, ошибки логируются и глотаются,
    повторов нет. TASKS_EAGER=True выполняет задачу сразу (тесты).
    """

    def __init__(self, app: Optional[Flask] = None):
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        app.extensions["background_tasks"] = self

    def _pool(self, app: Flask) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                workers = int(app.config.get("TASKS_MAX_WORKERS", 4))
                self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bg-task")
            return self._executor

    def submit(self, fn: Callable[..., Any], *args, **kwargs) -> Future | None:
        app = current_app._get_current_object()
        if app.config.get("TASKS_EAGER"):
            # уже внутри app context: та же сессия, что и у запроса
            try:
                fn(*args, **kwargs)
            except Exception:
                log.exception("background task %s failed", getattr(fn, "__name__", fn))
            return None
        return self._pool(app).submit(_run_in_context, app, fn, args, kwargs)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)


def _run_in_context(app: Flask, fn: Callable[..., Any], args: tuple, kwargs: dict) -> None:
    with app.app_context():
        try:
            fn(*args, **kwargs)
        except Exception:
            log.exception("background task %s failed", getattr(fn, "__name__", fn))
