from functools import wraps

from biometric.exceptions import PermissionDenied


def permission_required(permission_code):
    """
    Guards a service function whose first argument is named ``actor``.
    The actor only needs a ``has_permission(code)`` predicate.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            actor = kwargs.get("actor")
            if actor is None:
                actor = _positional_actor(f, args)
            if actor is None or not actor.has_permission(permission_code):
                raise PermissionDenied(permission_code)
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def _positional_actor(f, args):
    names = f.__code__.co_varnames[:f.__code__.co_argcount]
    if "actor" in names:
        idx = names.index("actor")
        if idx < len(args):
            return args[idx]
    return None
