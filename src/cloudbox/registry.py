"""Registry of the cloud instances living in this process."""

import logging
import shutil
from threading import Lock
from typing import Any, Optional

from cloudbox.instance import CloudInstance

logger = logging.getLogger(__name__)


class InstanceRegistry:
    """Thread-safe, insertion-ordered collection of CloudInstance objects.

    Owned by the host application. Instances are matched by identity, so
    two instances sharing an id are still distinct entries.
    """

    def __init__(self):
        """Initialize empty registry."""
        self._instances: list[CloudInstance] = []
        self._lock = Lock()

    def create(self, *args: Any, **kwargs: Any) -> CloudInstance:
        """Construct a CloudInstance and add it.

        Arguments are passed through to CloudInstance.
        """
        instance = CloudInstance(*args, **kwargs)
        self.add(instance)
        return instance

    def add(self, instance: CloudInstance) -> None:
        """Append an instance. Adding the same object twice is a no-op."""
        with self._lock:
            if any(i is instance for i in self._instances):
                return
            self._instances.append(instance)
        logger.info(f"Registered cloud instance {instance.instance_id}")

    def get(self, instance_id: int) -> Optional[CloudInstance]:
        """Get the most recent instance with instance_id.

        Returns:
            CloudInstance if found, None otherwise.
        """
        with self._lock:
            for instance in reversed(self._instances):
                if instance.instance_id == instance_id:
                    return instance
        return None

    def last_instance(self) -> Optional[CloudInstance]:
        """Most recently added instance still present, or None."""
        with self._lock:
            return self._instances[-1] if self._instances else None

    def remove(self, instance: CloudInstance) -> bool:
        """Detach an instance and dispose its transport. Data stays on disk.

        Returns:
            True if the instance was registered, False otherwise.
        """
        with self._lock:
            for index, candidate in enumerate(self._instances):
                if candidate is instance:
                    del self._instances[index]
                    break
            else:
                return False
        instance.dispose()
        logger.info(f"Removed cloud instance {instance.instance_id}")
        return True

    def destroy(self, instance: CloudInstance) -> None:
        """Remove an instance and delete its storage directory.

        Irreversible. Callers must confirm with the user first (for example
        with CloudInstance.verify_pin); no confirmation happens here.
        """
        path = instance.storage_path
        self.remove(instance)
        if path.exists():
            shutil.rmtree(path)
        logger.warning(f"Destroyed cloud instance {instance.instance_id} at {path}")

    def list_all(self) -> list[CloudInstance]:
        """Snapshot of all instances, oldest first."""
        with self._lock:
            return list(self._instances)

    def status_report(self) -> str:
        """Status of every instance, separated by blank lines."""
        return "\n".join(instance.status() for instance in self.list_all())

    def __len__(self) -> int:
        """Return number of instances in registry."""
        with self._lock:
            return len(self._instances)

    def __contains__(self, instance: object) -> bool:
        """Check if this exact instance is registered."""
        with self._lock:
            return any(i is instance for i in self._instances)
