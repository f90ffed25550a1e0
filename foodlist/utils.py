import functools
import inspect

from loguru import logger


def _bound_params(func, args, kwargs) -> dict:
    sig = inspect.signature(func)
    bound_args = sig.bind(*args, **kwargs)
    bound_args.apply_defaults()
    params = dict(bound_args.arguments)
    params.pop("self", None)
    return params


def safe_func_wrapper(func):
    """
    A decorator that logs function entry, exit, and exceptions.

    Features:
    - Logs function name and parameters before execution
    - Logs exceptions and re-raises them unchanged
    - Logs a success message after successful execution
    - Works for both plain and coroutine functions
    """

    if inspect.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            func_name = func.__name__
            logger.debug(f"Entering {func_name} with params: {_bound_params(func, args, kwargs)}")
            try:
                result = await func(*args, **kwargs)
                logger.debug(f"{func_name} succeeded. Exiting..")
                return result
            except Exception as e:
                logger.error(f"{func_name} raised {type(e).__name__}: {e}")
                raise

        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        func_name = func.__name__
        logger.debug(f"Entering {func_name} with params: {_bound_params(func, args, kwargs)}")
        try:
            result = func(*args, **kwargs)
            logger.debug(f"{func_name} succeeded. Exiting..")
            return result
        except Exception as e:
            logger.error(f"{func_name} raised {type(e).__name__}: {e}")
            raise

    return wrapper
