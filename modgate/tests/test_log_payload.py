from modgate.util.log_payload import (
    ARRAY_CONTENT_PLACEHOLDER,
    excerpt_for_log,
    mask_for_log,
    summarize_payload_for_log,
)


def test_summarize_payload_hides_array_content_without_mutating_input():
    payload = {
        "model": "m",
        "messages": [
            {"role": "user", "content": [{"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}}]},
            {"role": "assistant", "content": "ok"},
        ],
    }

    summarized = summarize_payload_for_log(payload)

    assert summarized["messages"][0]["content"] == ARRAY_CONTENT_PLACEHOLDER
    assert summarized["messages"][1]["content"] == "ok"
    assert isinstance(payload["messages"][0]["content"], list)


def test_excerpt_truncates_long_text():
    text = "x" * 600
    excerpt = excerpt_for_log(text, max_len=10)
    assert excerpt.startswith("xxxxxxxxxx ... [truncated, total 600 chars]")
    assert excerpt_for_log("short") == "short"


def test_mask_for_log():
    assert mask_for_log("") == ""
    assert mask_for_log("abc") == "***"
    assert mask_for_log("sk-1234567890") == "sk-********90"
