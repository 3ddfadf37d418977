"""
Tool dispatcher: routes a function name plus arguments to exactly one tool.
"""

import json
import logging
from typing import Any, Dict, Iterable, Optional, Union

from pydantic import ValidationError

from .models import ResultEnvelope
from .tools import TOOL_SPECS, ToolContext, ToolSpec

logger = logging.getLogger(__name__)


def _parse_arguments(arguments: Union[str, bytes, Dict[str, Any], None]) -> Dict[str, Any]:
    if arguments is None:
        return {}
    if isinstance(arguments, (str, bytes)):
        if not arguments.strip():
            return {}
        arguments = json.loads(arguments)
    if not isinstance(arguments, dict):
        raise ValueError("arguments must be a JSON object")
    return arguments


class ToolDispatcher:
    """
    Name -> handler registry built once at construction.

    dispatch() never raises: unknown names and bad arguments give a 400
    envelope, failures inside a tool give a 500 envelope. There are no
    retries here.
    """

    def __init__(self, context: ToolContext, specs: Optional[Iterable[ToolSpec]] = None):
        self.context = context
        self.registry: Dict[str, ToolSpec] = {
            spec.name: spec for spec in (TOOL_SPECS if specs is None else specs)
        }

    def __contains__(self, name: str) -> bool:
        return name in self.registry

    def definitions(self, names: Optional[Iterable[str]] = None) -> list:
        selected = self.registry.keys() if names is None else names
        return [self.registry[name].definition() for name in selected]

    def dispatch(self, name: str, arguments: Union[str, Dict[str, Any], None] = None) -> ResultEnvelope:
        spec = self.registry.get(name)
        if spec is None:
            logger.error("Unknown function: %s", name)
            return ResultEnvelope.client_error(f"Unknown function: {name}")

        logger.info("Executing function %s with arguments %s", name, arguments)

        try:
            args = spec.args_model.model_validate(_parse_arguments(arguments))
        except ValidationError as e:
            logger.warning("Invalid arguments for %s: %s", name, e)
            return ResultEnvelope.client_error(f"Invalid arguments for {name}: {e}")
        except ValueError as e:
            logger.warning("Could not parse arguments for %s: %s", name, e)
            return ResultEnvelope.client_error(f"Invalid arguments for {name}: {e}")

        try:
            result = spec.handler(self.context, args)
        except Exception as e:
            logger.exception("Error executing function %s", name)
            return ResultEnvelope.server_error(str(e) or "An unknown error occurred")

        if result.error:
            logger.info("Error in tool call result for %s: %s", name, result.error)
        return result
