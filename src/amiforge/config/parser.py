"""YAML configuration parser for amiforge."""

from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import ValidationError

from .models import ImageConfig, ProviderConfig, TimeoutsConfig


class ConfigValidationError(Exception):
    """Exception raised when configuration validation fails."""

    def __init__(self, message: str, errors: Optional[List[Dict]] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(self.message)

    def __str__(self) -> str:
        """Format validation errors for display."""
        if not self.errors:
            return self.message

        error_lines = [self.message, ""]
        for error in self.errors:
            location = " -> ".join(str(loc) for loc in error.get("loc", []))
            msg = error.get("msg", "Unknown error")
            error_lines.append(f"  • {location}: {msg}")

        return "\n".join(error_lines)


def _collect(errors: List[Dict], prefix: List, exc: ValidationError) -> None:
    for error in exc.errors():
        errors.append({"loc": prefix + list(error["loc"]), "msg": error["msg"]})


class Config:
    """Configuration manager for amiforge."""

    def __init__(self, config_path: str):
        """Initialize configuration manager.

        Args:
            config_path: Path to amiforge.yaml configuration file
        """
        self.config_path = Path(config_path)
        self.data: Dict = {}
        self.provider: ProviderConfig = ProviderConfig()
        self.timeouts: TimeoutsConfig = TimeoutsConfig()
        self.images: List[ImageConfig] = []

    def load(self) -> "Config":
        """Load and validate configuration from YAML file.

        Returns:
            Self for method chaining

        Raises:
            ConfigValidationError: If configuration is invalid
            FileNotFoundError: If configuration file doesn't exist
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, "r") as f:
                self.data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Failed to parse YAML: {e}")

        if not isinstance(self.data, dict):
            raise ConfigValidationError("Configuration root must be a mapping")

        validation_errors = self.validate()
        if validation_errors:
            raise ConfigValidationError(
                f"Configuration validation failed with {len(validation_errors)} error(s)",
                validation_errors,
            )

        self.provider = ProviderConfig(**(self.data.get("provider") or {}))
        self.timeouts = TimeoutsConfig(**(self.data.get("timeouts") or {}))
        self.images = [ImageConfig(**image_data) for image_data in self.data.get("images") or []]

        return self

    def validate(self) -> List[Dict]:
        """Validate configuration against schema.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: List[Dict] = []

        for section, model in (("provider", ProviderConfig), ("timeouts", TimeoutsConfig)):
            section_data = self.data.get(section)
            if section_data is None:
                continue
            if not isinstance(section_data, dict):
                errors.append({"loc": [section], "msg": f"'{section}' must be a mapping"})
                continue
            try:
                model(**section_data)
            except ValidationError as e:
                _collect(errors, [section], e)

        images = self.data.get("images")
        if images is None:
            errors.append({"loc": ["images"], "msg": "Required field 'images' is missing"})
            return errors
        if not isinstance(images, list):
            errors.append({"loc": ["images"], "msg": "'images' must be a list"})
            return errors

        seen = set()
        for idx, image_data in enumerate(images):
            if not isinstance(image_data, dict):
                errors.append({"loc": ["images", idx], "msg": "Image entry must be a mapping"})
                continue
            try:
                ImageConfig(**image_data)
            except ValidationError as e:
                _collect(errors, ["images", idx], e)

            name = image_data.get("name")
            if name in seen:
                errors.append(
                    {"loc": ["images", idx, "name"], "msg": f"Duplicate image name '{name}'"}
                )
            seen.add(name)

        return errors

    def get_image(self, name: str) -> Optional[ImageConfig]:
        """Get a declared image by name.

        Args:
            name: Image name

        Returns:
            Image configuration or None if not declared
        """
        for image in self.images:
            if image.name == name:
                return image
        return None

    def get_images(self, image_filter: Optional[str] = None) -> List[ImageConfig]:
        if image_filter:
            return [image for image in self.images if image.name == image_filter]
        return self.images
