"""Bounded polling of asynchronously provisioned remote resources."""

import time
from typing import Any, Callable, Collection, Optional, Tuple

from amiforge.state.models import ImageStatus
from amiforge.utils.errors import ResourceNotFoundError, UnexpectedStatusError, WaitTimeoutError
from amiforge.utils.logging import get_logger

logger = get_logger(__name__)

# A probe returns the observed record and its status, and raises
# ResourceNotFoundError when the remote API does not know the resource.
Probe = Callable[[], Tuple[Any, str]]

# First backoff step; doubled after every pending probe
INITIAL_POLL_INTERVAL = 0.1


def await_state(
    probe: Probe,
    pending: Collection[str],
    target: Collection[str],
    timeout: float,
    poll_delay: float = 0.0,
    min_poll_interval: float = 0.0,
    max_poll_interval: float = 10.0,
    is_new: bool = False,
    description: str = "resource",
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """Poll until the probed resource reaches a target status.

    Not-found is pending while the resource is new (read-after-write lag) and
    the synthetic 'destroyed' status otherwise. The deadline is hard: once
    ``timeout`` seconds have elapsed no further probe is issued.

    Args:
        probe: Callable returning ``(record, status)``
        pending: Statuses that mean "keep waiting"
        target: Statuses that end the wait successfully
        timeout: Total seconds allowed, including ``poll_delay``
        poll_delay: Seconds to wait before the first probe
        min_poll_interval: Lower bound of the wait between probes
        max_poll_interval: Upper bound of the backoff growth
        is_new: Whether the resource was just created
        description: Used in log and error messages
        clock: Monotonic time source
        sleep: Function used to wait

    Returns:
        The record returned by the probe that observed a target status

    Raises:
        UnexpectedStatusError: Status outside both pending and target
        WaitTimeoutError: Deadline reached; carries the last observed status
    """
    pending = set(pending)
    target = set(target)
    deadline = clock() + timeout
    interval = INITIAL_POLL_INTERVAL
    last_status: Optional[str] = None
    probes = 0

    if poll_delay > 0:
        sleep(min(poll_delay, timeout))

    while clock() < deadline:
        try:
            record, status = probe()
        except ResourceNotFoundError:
            record, status = None, None if is_new else ImageStatus.DESTROYED
        probes += 1

        if status is None:
            logger.debug(f"{description} not found yet, still waiting")
        else:
            last_status = status
            if status in target:
                logger.debug(f"{description} reached '{status}' after {probes} probes")
                return record
            if status not in pending:
                raise UnexpectedStatusError(status, target)

        wait = max(interval, min_poll_interval)
        interval = min(interval * 2, max_poll_interval)

        remaining = deadline - clock()
        if remaining <= 0:
            break
        logger.debug(f"{description} is '{status}', next check in {min(wait, remaining):.1f}s")
        sleep(min(wait, remaining))

    raise WaitTimeoutError(last_status, timeout)


def image_state_probe(client, image_id: str) -> Probe:
    """Build a probe reporting an image and its state.

    Args:
        client: EC2ImageClient
        image_id: Image to describe

    Returns:
        Probe for await_state
    """
    def probe() -> Tuple[dict, str]:
        image = client.describe_image(image_id)
        return image, image.get("State", "")

    return probe


def wait_for_available(
    client,
    image_id: str,
    timeout: float,
    poll_delay: float,
    min_poll_interval: float,
    max_poll_interval: float = 10.0,
    is_new: bool = True,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> dict:
    """Wait for an image to leave 'pending' and become 'available'.

    Returns:
        The describe result of the available image
    """
    logger.info(f"Waiting for AMI {image_id} to become available...")
    try:
        return await_state(
            image_state_probe(client, image_id),
            pending={ImageStatus.PENDING},
            target={ImageStatus.AVAILABLE},
            timeout=timeout,
            poll_delay=poll_delay,
            min_poll_interval=min_poll_interval,
            max_poll_interval=max_poll_interval,
            is_new=is_new,
            description=f"AMI {image_id}",
            clock=clock,
            sleep=sleep,
        )
    except (UnexpectedStatusError, WaitTimeoutError) as e:
        e.with_prefix(f"Error waiting for AMI ({image_id}) to be ready: ")
        raise e.with_context(resource_id=image_id, operation="wait_for_available")


def wait_for_destroyed(
    client,
    image_id: str,
    timeout: float,
    poll_delay: float,
    min_poll_interval: float,
    max_poll_interval: float = 10.0,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Wait until EC2 no longer reports the image."""
    logger.info(f"Waiting for AMI {image_id} to be deleted...")
    try:
        await_state(
            image_state_probe(client, image_id),
            pending={ImageStatus.AVAILABLE, ImageStatus.PENDING, ImageStatus.FAILED},
            target={ImageStatus.DESTROYED, ImageStatus.DEREGISTERED},
            timeout=timeout,
            poll_delay=poll_delay,
            min_poll_interval=min_poll_interval,
            max_poll_interval=max_poll_interval,
            is_new=False,
            description=f"AMI {image_id}",
            clock=clock,
            sleep=sleep,
        )
    except (UnexpectedStatusError, WaitTimeoutError) as e:
        e.with_prefix(f"Error waiting for AMI ({image_id}) to be deleted: ")
        raise e.with_context(resource_id=image_id, operation="wait_for_destroyed")
