import asyncio
import smtplib
import time
from email.message import EmailMessage
from typing import Any, Awaitable, Callable, Union


async def try_until_success(
    function: Union[Callable[[], Awaitable], Callable[[], Any]],
    timeout_seconds: int = 10,
    max_fn_duration_seconds: int = 1,
    poll_interval_seconds: float = 0.1,
):
    timeout = time.time() + timeout_seconds
    last_err = None
    while time.time() < timeout:
        try:
            result = function()
            if hasattr(result, "__await__"):
                return await asyncio.wait_for(result, max_fn_duration_seconds)
            else:
                return result
        except asyncio.TimeoutError as err:
            raise TimeoutError(
                f"Function execution duration exceeded {max_fn_duration_seconds} seconds."
            ) from err
        except Exception as err:  # pylint: disable=broad-except
            last_err = err
            await asyncio.sleep(poll_interval_seconds)
    raise TimeoutError(
        f"Call to {function} not successful within {timeout_seconds} seconds."
    ) from last_err


def _send_message(msg: EmailMessage, host: str, port: int):
    with smtplib.SMTP(host, port, timeout=10) as smtp:
        smtp.send_message(msg)


async def send_email(msg: EmailMessage, host: str, port: int):
    """Deliver ``msg`` with smtplib from a worker thread.

    Raises :class:`smtplib.SMTPDataError` or
    :class:`smtplib.SMTPRecipientsRefused` when the server rejects the message.
    """
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, _send_message, msg, host, port)
