from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Callable, Optional

Hook = Callable[..., Any]


@dataclass
class LifecycleHooks:
    """Optional host callbacks run at fixed points of the session lifecycle.

    - ``pre_return_path_redirect(request, token_set, back_to_path)``: after a
      successful login, before the post-login redirect.
    - ``pre_logout(request)``: before the session is dropped.
    - ``on_error(error, request)``: on any error escaping the auth routes.

    A truthy return means "handled" and is returned to the client verbatim.
    Hooks may be plain functions or coroutines.
    """

    pre_return_path_redirect: Optional[Hook] = None
    pre_logout: Optional[Hook] = None
    on_error: Optional[Hook] = None

    async def run(self, name: str, *args: Any) -> Any:
        hook = getattr(self, name)
        if hook is None:
            return None
        result = hook(*args)
        if inspect.isawaitable(result):
            result = await result
        return result
