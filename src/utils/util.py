from flask import abort
from typing import Any, get_origin, get_args
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
import logging
import time

from dateutil import parser as date_parser
import requests

logger = logging.getLogger("marketplace_messaging")

MAX_RETRIES = 3  # number of retry attempts
RETRY_DELAY = 1  # initial retry delay in seconds


def validate_payload(data: Any, payload_fields: list[dict]) -> None:
    """
    Validates an incoming json payload.
        - checks the payload is a json object.
        - checks the required fields are present and of the correct data type.

    Args:
        data: json payload
        payload_fields: list of dicts with payload field name, data type, required flag

    Returns:
        None
    """
    if not isinstance(data, dict):
        abort(400, description="missing json payload")

    errors = []

    # check the payload fields
    for item in payload_fields:
        field_name = item["field"]
        expected_type = item["type"]
        required_field = item["required"]
        value = data.get(field_name)

        if value is None:
            if required_field:
                errors.append(f"payload missing required field: {field_name}")
            continue

        # handle generic types like list[str]
        origin = get_origin(expected_type)
        if origin is list:
            item_type = get_args(expected_type)[0]
            if not isinstance(value, list) or not all(
                isinstance(x, item_type) for x in value
            ):
                errors.append(
                    f"payload field '{field_name}' must be a list of {item_type.__name__}"
                )

        # handle money amounts, sent as numbers or numeric strings
        elif expected_type is Decimal:
            if isinstance(value, bool) or parse_amount(value) is None:
                errors.append(f"payload field '{field_name}' must be a non-negative amount")

        # handle datetime types
        elif expected_type is datetime:
            if not isinstance(value, str) or parse_timestamp(value) is None:
                errors.append(
                    f"payload field '{field_name}' must be a valid ISO8601 datetime string"
                )

        # bool is an int subclass, keep it out of int fields
        elif expected_type is int and isinstance(value, bool):
            errors.append(f"payload field '{field_name}' must be of type int")

        # handle other types
        else:
            if not isinstance(value, expected_type):
                errors.append(
                    f"payload field '{field_name}' must be of type {expected_type.__name__}"
                )

    if errors:
        abort(400, description="; ".join(errors))


def parse_amount(value) -> Decimal:
    """
    Parses a money amount

    Returns:
        Decimal, or None when the value is not a finite non-negative number
    """
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or amount < 0:
        return None
    return amount


def parse_timestamp(value: str) -> datetime:
    """
    Parses an ISO8601 timestamp into an aware UTC datetime

    Naive timestamps are taken as UTC.

    Returns:
        datetime, or None when the value can't be parsed
    """
    try:
        parsed = date_parser.isoparse(value)
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def send_message(api_url: str, message_data: dict, timeout: float = 5) -> bool:
    """
    Posts a json payload to the specified api url

    Args:
        api_url: url to post to
        message_data: json payload
        timeout: seconds to wait for the remote end

    Returns:
        bool, true if the payload was accepted
    """
    try:
        response = requests.post(
            api_url,
            json=message_data,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )
    except requests.Timeout as e:
        raise TimeoutError(f"request to {api_url} timed out") from e
    response.raise_for_status()

    logger.info(f"response status code: {response.status_code}")
    return True


def api_retry_with_backoff(func, *args, **kwargs):
    """
    Calls func, retrying timeouts with a doubling delay; any other error ends the attempts.
    Args:
        func: callable, e.g. send_message for webhook delivery
        *args, **kwargs: passed through to func

    Returns:
        func's result, or False once the attempts are exhausted.
    """
    delay = RETRY_DELAY
    for attempt in range(1, MAX_RETRIES + 1):
        try:
            return func(*args, **kwargs)
        except TimeoutError:
            if attempt == MAX_RETRIES:
                logger.error(f"{func.__name__} timed out {MAX_RETRIES} times, giving up")
                break
            logger.warning(
                f"{func.__name__} timed out (attempt {attempt}/{MAX_RETRIES}), retrying in {delay}s"
            )
            time.sleep(delay)
            delay *= 2
        except Exception:
            logger.exception(f"{func.__name__} failed, not retrying")
            break
    return False
