'''
A worker thread that runs handlers one at a time, in the order they arrive.

State owned by an Actor is only ever touched from its worker thread, so it
needs no locking. Timer ticks are posted to the same queue as everything else.
'''

import concurrent.futures
import logging
import queue
import threading
import traceback

from typing import Any, Callable

logger = logging.getLogger(__name__)

class Actor:
    '''Owns one worker thread and the queue of handlers feeding it.'''
    def __init__(self, name: str):
        self.name = name
        self.queue: queue.Queue[tuple[Callable[..., Any], tuple[Any, ...], concurrent.futures.Future | None] | None] = queue.Queue()

        def run_thread() -> None:
            self._run()
        self.thread = threading.Thread(target=run_thread, name=name, daemon=True)
        self.thread.start()

    def _run(self) -> None:
        while True:
            item = self.queue.get()
            if item is None:
                return
            fun, args, future = item
            if future is not None and not future.set_running_or_notify_cancel():
                continue
            try:
                result = fun(*args)
            except Exception as e:
                if future is not None:
                    future.set_exception(e)
                else:
                    logger.error('Unhandled error in %s:\n%s', self.name, traceback.format_exc())
            else:
                if future is not None:
                    future.set_result(result)

    def in_worker(self) -> bool:
        return threading.current_thread() is self.thread

    def call(self, fun: Callable[..., Any], *args: Any, timeout: float | None = None) -> Any:
        '''Run fun(*args) on the worker and wait for its result (or exception).'''
        if self.in_worker():
            return fun(*args)
        future: concurrent.futures.Future = concurrent.futures.Future()
        self.queue.put((fun, args, future))
        return future.result(timeout)

    def cast(self, fun: Callable[..., Any], *args: Any) -> None:
        '''Queue fun(*args) to run on the worker, without waiting for it.'''
        self.queue.put((fun, args, None))

    def send_after(self, delay: float, fun: Callable[..., Any], *args: Any) -> threading.Timer:
        '''Queue fun(*args) after delay seconds. Cancel the returned timer to prevent it.'''
        timer = threading.Timer(delay, self.cast, (fun,) + args)
        timer.daemon = True
        timer.start()
        return timer

    def close(self) -> None:
        '''Let queued handlers finish, then stop the worker.'''
        self.queue.put(None)
        if not self.in_worker():
            self.thread.join()
