from crossllm_bridge.logging import _make_redaction_processor


def test_redaction_masks_secrets_and_sensitive_keys():
    processor = _make_redaction_processor(secrets=["sk-live-abcdef"])

    out = processor(
        None,
        "info",
        {
            "event": "upstream_call",
            "api_key": "sk-live-abcdef",
            "auth_token": "t-123",
            "headers": {"Authorization": "Bearer abcdefghijk"},
            "detail": "failed with key sk-live-abcdef and Bearer zyxwvutsrq",
            "usage": {"total_tokens": 12, "prompt_tokens": 5},
        },
    )

    assert out["api_key"] == "[REDACTED]"
    assert out["auth_token"] == "[REDACTED]"
    assert out["headers"]["Authorization"] == "[REDACTED]"
    assert out["detail"] == "failed with key [REDACTED] and Bearer [REDACTED]"
    # token counters are not credentials
    assert out["usage"] == {"total_tokens": 12, "prompt_tokens": 5}
