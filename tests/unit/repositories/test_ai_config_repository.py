from __future__ import annotations


def test_resolve_returns_none_when_missing(ai_config_repo):
    assert ai_config_repo.resolve("exp-unknown") is None


def test_upsert_then_resolve(ai_config_repo):
    ai_config_repo.upsert(
        experience_id="exp-1",
        provider="google",
        model="gemini-2.5-flash-image",
        prompt="first",
        reference_images=["media/c/ai-reference/a.png"],
    )
    ai_config_repo.upsert(
        experience_id="exp-1",
        provider="google",
        model="gemini-2.5-flash-image",
        prompt="second",
        reference_images=["media/c/ai-reference/b.png"],
        temperature=0.7,
    )

    config = ai_config_repo.resolve("exp-1")

    assert config.prompt == "second"
    assert config.reference_images == ("media/c/ai-reference/b.png",)
    assert config.temperature == 0.7
