"""JSON response class using orjson serialization.

``ORJSONResponse`` is the default response class of the application and is
used by the instrumented handlers, so response sizes recorded by the metrics
middleware reflect orjson's compact output.
"""

from typing import Any

import orjson
from fastapi.responses import JSONResponse
from pydantic import BaseModel


class ORJSONResponse(JSONResponse):
    """Response class serializing content with orjson.

    Attributes:
        media_type: The media type for the response.
    """

    media_type = "application/json"

    def render(self, content: Any) -> bytes:  # noqa: ANN401 - accepts any JSON-serializable content
        """Render the content as JSON using orjson.

        Args:
            content: The content to serialize to JSON.

        Returns:
            bytes: The JSON-encoded bytes.

        Raises:
            orjson.JSONEncodeError: If the content is not serializable.
        """
        if isinstance(content, BaseModel):
            content = content.model_dump(mode="json")

        return orjson.dumps(content, option=orjson.OPT_SORT_KEYS)
