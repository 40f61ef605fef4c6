"""Loading of profiles, content packs, controls and overlays from JSON or YAML.

Documents may use camelCase (as written into bundles) or snake_case keys.
Bundle artifacts written by BundleBuilder are read back with the
``load_pack_controls`` and ``load_overlay_decisions`` helpers.
"""

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import TypeAdapter

from aumos_mission_engine.build import layout
from aumos_mission_engine.core.models import (
    ContentPack,
    ControlRecord,
    Overlay,
    OverlayAppliedDecision,
    Profile,
)
from aumos_mission_engine.errors import BundleValidationError

_YAML_SUFFIXES = {".yaml", ".yml"}

_controls_adapter = TypeAdapter(list[ControlRecord])
_overlays_adapter = TypeAdapter(list[Overlay])
_decisions_adapter = TypeAdapter(list[OverlayAppliedDecision])


def load_document(path: Path) -> Any:
    """Parse a JSON or YAML file by extension.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in _YAML_SUFFIXES:
        return yaml.safe_load(text)
    return json.loads(text)


def load_profile(path: Path) -> Profile:
    return Profile.model_validate(load_document(path))


def load_content_pack(path: Path) -> ContentPack:
    return ContentPack.model_validate(load_document(path))


def load_controls(path: Path) -> list[ControlRecord]:
    """Load a control list. A mapping with a ``controls`` key is also accepted."""
    document = load_document(path)
    if isinstance(document, dict):
        document = document.get("controls", [])
    return _controls_adapter.validate_python(document)


def load_overlays(path: Path) -> list[Overlay]:
    """Load overlays in file order. A single overlay mapping becomes a one-element list."""
    document = load_document(path)
    if isinstance(document, dict):
        document = document["overlays"] if "overlays" in document else [document]
    return _overlays_adapter.validate_python(document)


def load_pack_controls(bundle_root: Path) -> list[ControlRecord]:
    """Read Manifest/pack_controls.json from a built bundle.

    Raises:
        BundleValidationError: If the bundle has no pack_controls.json.
    """
    path = bundle_root / layout.PACK_CONTROLS_FILE
    if not path.is_file():
        raise BundleValidationError(
            f"Bundle is missing {layout.PACK_CONTROLS_FILE}.",
            details={"bundle_root": str(bundle_root)},
        )
    return _controls_adapter.validate_json(path.read_bytes())


def load_overlay_decisions(bundle_root: Path) -> list[OverlayAppliedDecision]:
    """Read Reports/overlay_decisions.json. A bundle without the file has no decisions."""
    path = bundle_root / layout.OVERLAY_DECISIONS_FILE
    if not path.is_file():
        return []
    return _decisions_adapter.validate_json(path.read_bytes())
