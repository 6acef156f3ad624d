import pytest

from backend.app.core.errors import InvalidIdentifier
from backend.app.services.validation import is_valid_video_id, require_video_id


@pytest.mark.parametrize("value", ["dQw4w9WgXcQ", "abc_DEF-123", "-----------", "___________"])
def test_accepts_eleven_character_ids(value) -> None:
    assert is_valid_video_id(value)


@pytest.mark.parametrize(
    "value",
    ["", "dQw4w9WgXc", "dQw4w9WgXcQQ", "dQw4w9WgX!Q", "dQw4w9WgXc ", "dQw4w9WgXc\n", "dQw4w9WgXcé", None, 12345678901, ["dQw4w9WgXcQ"]],
)
def test_rejects_everything_else(value) -> None:
    assert not is_valid_video_id(value)


def test_require_video_id_raises_client_error() -> None:
    with pytest.raises(InvalidIdentifier) as info:
        require_video_id("bad id")
    assert info.value.status_code == 400
    assert require_video_id("dQw4w9WgXcQ") == "dQw4w9WgXcQ"
