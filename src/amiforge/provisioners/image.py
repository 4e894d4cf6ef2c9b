"""AMI reconciler: create, read, update and delete against EC2."""

import time
from contextlib import contextmanager
from typing import Callable, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from amiforge.config.models import ImageConfig, ProviderConfig, TimeoutsConfig
from amiforge.state.models import ImageRecord, ImageStatus, ObservedImage
from amiforge.tagging.manager import TagSynchronizer
from amiforge.utils.errors import (
    ConfigurationError,
    ErrorContext,
    ErrorCategory,
    ImageError,
    PartialFailureError,
    ResourceNotFoundError,
    StateError,
    UnexpectedStatusError,
    error_code,
    error_handler,
)
from amiforge.utils.logging import LogContext, get_logger
from amiforge.utils.retry import RetryStrategy
from .base import BaseProvisioner, ChangeType, ProvisionPlan
from .client import IMAGE_NOT_FOUND_CODES, SNAPSHOT_NOT_FOUND_CODES, EC2ImageClient
from .strategies import strategy_for
from .translator import detect_drift, from_remote
from .waiter import wait_for_available, wait_for_destroyed

logger = get_logger(__name__)


class ImageProvisioner(BaseProvisioner):
    """Reconciles one AMI at a time with its declared configuration."""

    resource_type = "AWS::EC2::Image"

    def __init__(
        self,
        client: EC2ImageClient,
        region: str,
        partition: str = "aws",
        timeouts: Optional[TimeoutsConfig] = None,
        provider: Optional[ProviderConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the image provisioner.

        Args:
            client: EC2 image client
            region: Region the images live in, used for ARNs
            partition: AWS partition, used for ARNs
            timeouts: Time budgets and polling cadence
            provider: Tag filtering settings
            clock: Monotonic time source for waits
            sleep: Function used to wait between polls
        """
        super().__init__(client)
        self.region = region
        self.partition = partition
        self.timeouts = timeouts or TimeoutsConfig()
        self.provider = provider or ProviderConfig()
        self.clock = clock
        self.sleep = sleep
        self.tags = TagSynchronizer(client)

    @contextmanager
    def _remote_call(self, operation: str, image_id: Optional[str]):
        """Attach operation and image id to any error leaving the block."""
        try:
            yield
        except ImageError as e:
            raise e.with_context(
                resource_id=image_id, resource_type=self.resource_type, operation=operation
            )
        except (ClientError, BotoCoreError, ConnectionError, TimeoutError) as e:
            raise error_handler.handle_exception(
                e,
                ErrorContext(
                    resource_id=image_id,
                    resource_type=self.resource_type,
                    operation=operation,
                    aws_service="ec2",
                ),
            ) from e

    def _wait_available(self, image_id: str, timeout: float, is_new: bool) -> dict:
        return wait_for_available(
            self.client,
            image_id,
            timeout=timeout,
            poll_delay=self.timeouts.poll_delay,
            min_poll_interval=self.timeouts.min_poll_interval,
            max_poll_interval=self.timeouts.max_poll_interval,
            is_new=is_new,
            clock=self.clock,
            sleep=self.sleep,
        )

    def plan(self, record: ImageRecord, desired: Optional[ImageConfig]) -> ProvisionPlan:
        """Decide how to bring the tracked image to the declared configuration.

        Immutable attribute changes force replacement. Tag or description
        changes, declared or drifted, are updated in place.
        """
        if desired is None:
            change = ChangeType.DELETE if record.exists else ChangeType.NO_CHANGE
            return ProvisionPlan(record=record, desired=None, change_type=change)

        if not record.exists:
            return ProvisionPlan(record=record, desired=desired, change_type=ChangeType.CREATE)

        replace_fields = record.config.replacement_fields(desired)
        if replace_fields:
            return ProvisionPlan(
                record=record,
                desired=desired,
                change_type=ChangeType.REPLACE,
                replace_fields=replace_fields,
                drift=list(record.drift),
            )

        current_tags = record.observed.tags if record.observed else record.config.tags
        current_description = (
            record.observed.description if record.observed else record.config.description
        )
        needs_update = (
            desired.tags != current_tags
            or desired.tags != record.config.tags
            or (desired.description and desired.description != current_description)
        )
        return ProvisionPlan(
            record=record,
            desired=desired,
            change_type=ChangeType.UPDATE if needs_update else ChangeType.NO_CHANGE,
            drift=list(record.drift),
        )

    def create(self, record: ImageRecord) -> ImageRecord:
        """Create the declared image and wait until it is available.

        The image id is recorded as soon as EC2 returns it, so a failure in
        any later step still leaves the image tracked. Tags applied before a
        failure are not rolled back.

        Raises:
            ConfigurationError: Before any remote call, for invalid configuration
            ImageError: Any remote failure, with operation and image id context
        """
        if record.exists:
            raise StateError(f"Record '{record.name}' already tracks image {record.image_id}")

        config = record.config
        strategy = strategy_for(config)

        with LogContext(resource_name=record.name, operation="create") as log_ctx:
            strategy.prepare(config)

            with self._remote_call("create", None):
                result = strategy.create(self.client, config)

            record.mark_created(result.image_id, result.manage_ebs_snapshots)
            image_id = result.image_id
            log_ctx.update(image_id=image_id)
            logger.info(
                f"Created AMI {image_id} via {strategy.name} "
                f"(manage_ebs_snapshots={result.manage_ebs_snapshots})"
            )

            with self._remote_call("create", image_id):
                if config.tags:
                    try:
                        self.tags.sync(image_id, {}, config.tags)
                    except ClientError as e:
                        raise error_handler.handle_exception(
                            e, ErrorContext(resource_id=image_id, operation="create")
                        ).with_prefix("error adding tags: ") from e
                self._wait_available(image_id, self.timeouts.create, is_new=True)

            observed = self._read(record, self.timeouts.create)
            if observed is None:
                raise ImageError(
                    f"AMI {image_id} disappeared right after creation",
                    category=ErrorCategory.PROVISIONING,
                    context=ErrorContext(
                        resource_id=image_id, resource_type=self.resource_type, operation="create"
                    ),
                )
        return record

    def read(self, record: ImageRecord) -> Optional[ObservedImage]:
        """Refresh the observed state of the tracked image.

        Returns:
            The observed image, or None when the image no longer exists, in
            which case the record is cleared and should be dropped

        Raises:
            UnexpectedStatusError: The image is neither available nor gone
        """
        return self._read(record, self.timeouts.create)

    def _read(self, record: ImageRecord, wait_timeout: float) -> Optional[ObservedImage]:
        if not record.exists:
            return None

        image_id = record.image_id
        with LogContext(image_id=image_id, resource_name=record.name, operation="read"):
            with self._remote_call("read", image_id):
                try:
                    image = self._describe(image_id, retry_not_found=record.new_resource)
                except ResourceNotFoundError:
                    logger.warning(f"AMI ({image_id}) not found, removing from state")
                    record.mark_absent()
                    return None

                state = image.get("State", "")
                if state == ImageStatus.PENDING:
                    # Only adopted images get here; create already waited
                    image = self._wait_available(image_id, wait_timeout, is_new=record.new_resource)
                    state = image.get("State", "")

                if state == ImageStatus.DEREGISTERED:
                    logger.warning(f"AMI ({image_id}) is deregistered, removing from state")
                    record.mark_absent()
                    return None

                if state != ImageStatus.AVAILABLE:
                    raise UnexpectedStatusError(
                        state, {ImageStatus.AVAILABLE}, message=f"AMI has become {state}"
                    )

            observed = from_remote(
                image,
                region=self.region,
                partition=self.partition,
                ignore_tag_keys=self.provider.ignore_tag_keys,
                ignore_tag_prefixes=self.provider.ignore_tag_prefixes,
            )
            record.observed = observed
            record.new_resource = False
            record.drift = detect_drift(record.config, observed)
            for drift in record.drift:
                logger.warning(
                    f"Drift on {drift.field}: declared {drift.declared!r}, observed {drift.observed!r}"
                )
            return observed

    def _describe(self, image_id: str, retry_not_found: bool) -> dict:
        if not retry_not_found:
            return self.client.describe_image(image_id)

        strategy = RetryStrategy.for_budget(
            self.timeouts.read_retry_timeout,
            retry_on=lambda e: isinstance(e, ResourceNotFoundError),
            sleep=self.sleep,
        )
        return strategy.execute_with_retry(self.client.describe_image, image_id)

    def update(self, record: ImageRecord, new_config: ImageConfig) -> Optional[ObservedImage]:
        """Apply tag and description changes, then re-read the image.

        Raises:
            ConfigurationError: An immutable attribute changed; the image has
                to be replaced instead
        """
        if not record.exists:
            raise StateError(f"Record '{record.name}' does not track an image")

        image_id = record.image_id
        replace_fields = record.config.replacement_fields(new_config)
        if replace_fields:
            raise ConfigurationError(
                f"{', '.join(replace_fields)} cannot be changed in place; the image must be replaced",
                context=ErrorContext(resource_id=image_id, operation="update"),
            )

        old_tags = record.observed.tags if record.observed else record.config.tags
        with LogContext(image_id=image_id, resource_name=record.name, operation="update"):
            with self._remote_call("update", image_id):
                try:
                    self.tags.sync(image_id, old_tags, new_config.tags)
                except ClientError as e:
                    raise error_handler.handle_exception(
                        e, ErrorContext(resource_id=image_id, operation="update")
                    ).with_prefix(f"error updating AMI ({image_id}) tags: ") from e

                if new_config.description:
                    self.client.modify_description(image_id, new_config.description)

            record.config = new_config
            return self._read(record, self.timeouts.update)

    def delete(self, record: ImageRecord) -> None:
        """Deregister the image and, when owned, its snapshots.

        Snapshot deletions are attempted independently. Deregistration is
        never rolled back, and the wait for the image to disappear happens
        even when some snapshot deletions failed.

        Raises:
            PartialFailureError: Some owned snapshots could not be deleted
        """
        if not record.exists:
            return

        image_id = record.image_id
        with LogContext(image_id=image_id, resource_name=record.name, operation="delete"):
            with self._remote_call("delete", image_id):
                try:
                    self.client.deregister_image(image_id)
                except ClientError as e:
                    if error_code(e) not in IMAGE_NOT_FOUND_CODES:
                        raise
                    logger.info(f"AMI {image_id} already deregistered")

            failures: Dict[str, Exception] = {}
            if record.manage_ebs_snapshots:
                for snapshot_id in self._owned_snapshots(record):
                    try:
                        self.client.delete_snapshot(snapshot_id)
                    except ClientError as e:
                        if error_code(e) in SNAPSHOT_NOT_FOUND_CODES:
                            logger.info(f"Snapshot {snapshot_id} already deleted")
                            continue
                        logger.error(f"Failed to delete snapshot {snapshot_id}: {e}")
                        failures[snapshot_id] = e
                    except BotoCoreError as e:
                        logger.error(f"Failed to delete snapshot {snapshot_id}: {e}")
                        failures[snapshot_id] = e

            try:
                with self._remote_call("delete", image_id):
                    wait_for_destroyed(
                        self.client,
                        image_id,
                        timeout=self.timeouts.delete,
                        poll_delay=self.timeouts.poll_delay,
                        min_poll_interval=self.timeouts.min_poll_interval,
                        max_poll_interval=self.timeouts.max_poll_interval,
                        clock=self.clock,
                        sleep=self.sleep,
                    )
            except ImageError as wait_error:
                if not failures:
                    raise
                # The record keeps the image id, the wait has to be repeated
                raise self._snapshot_failure(image_id, failures, wait_error) from wait_error

            record.mark_absent()
            logger.info(f"AMI {image_id} deleted")

            if failures:
                raise self._snapshot_failure(image_id, failures)

    def _snapshot_failure(
        self,
        image_id: str,
        failures: Dict[str, Exception],
        wait_error: Optional[ImageError] = None,
    ) -> PartialFailureError:
        summary = "Errors while deleting associated EBS snapshots:"
        if wait_error is not None:
            summary = f"{wait_error.message}\n{summary}"
        return PartialFailureError(
            summary,
            failures,
            context=ErrorContext(
                resource_id=image_id, resource_type=self.resource_type, operation="delete"
            ),
            cause=wait_error,
        )

    def _owned_snapshots(self, record: ImageRecord) -> List[str]:
        """Snapshot ids to delete with the image, observed ones first."""
        snapshot_ids = record.observed.snapshot_ids() if record.observed else []
        if not snapshot_ids:
            snapshot_ids = [
                device.snapshot_id
                for _, device in sorted(record.config.ebs_by_device.items())
                if device.snapshot_id
            ]
        return list(dict.fromkeys(snapshot_ids))
