"""Parameter and output files exchanged through a deployment's state directory.

Layout:
  <state>/tfvars.json             (template parameters, written before launch)
  <state>/terraform.output.json   (outputs, written by the deployment container)
"""

import json
import os
from pathlib import Path
from typing import Any, Mapping

import structlog

logger = structlog.get_logger()

PARAMETERS_FILE_NAME = "tfvars.json"
OUTPUTS_FILE_NAME = "terraform.output.json"


class OutputsFormatError(Exception):
    """Raised when the outputs file exists but is not a JSON object."""

    pass


def write_parameters(parameters: Mapping[str, str], directory: Path) -> Path:
    """Write template parameters as a flat JSON object, replacing any previous file.

    Returns:
        Path of the written parameters file.
    """
    path = Path(directory) / PARAMETERS_FILE_NAME
    logger.info("writing_parameters", parameter_count=len(parameters), path=str(path))

    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(dict(parameters), indent=2), encoding="utf-8")
    os.replace(tmp, path)

    return path


def read_parameters(directory: Path) -> dict[str, str]:
    """Read back the parameters file (empty if it was never written)."""
    path = Path(directory) / PARAMETERS_FILE_NAME
    if not path.is_file():
        return {}
    return json.loads(path.read_text(encoding="utf-8"))


def read_outputs(directory: Path) -> dict[str, Any]:
    """Read deployment outputs, if the container wrote any.

    Returns:
        The outputs tree, or an empty dict when the outputs file does not exist.

    Raises:
        OutputsFormatError: If the file is not valid JSON or not a JSON object.
    """
    path = Path(directory) / OUTPUTS_FILE_NAME
    if not path.is_file():
        logger.info("outputs_file_missing", path=str(path))
        return {}

    try:
        outputs = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise OutputsFormatError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(outputs, dict):
        raise OutputsFormatError(
            f"Expected a JSON object in {path}, got {type(outputs).__name__}"
        )

    logger.info("outputs_read", output_count=len(outputs), path=str(path))
    return outputs
