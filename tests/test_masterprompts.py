import json

import pytest

from prompts.masterprompts import _load_prompt, get_prompt, load_prompts

EXPECTED_BOUNDS = {
    "difficulty_recommendation": (0.3, 500, "recommendation"),
    "learning_hints": (0.4, 200, "coach"),
    "conversation_flow": (0.3, 250, "coach"),
    "alternative_responses": (0.5, 400, "coach"),
    "communication_tips": (0.4, 200, "coach"),
    "roleplay_reply": (0.6, 60, "coach"),
    "response_feedback": (0.3, 400, "coach"),
}


def test_every_model_operation_has_a_bounded_prompt():
    prompts = load_prompts()
    assert set(prompts) == set(EXPECTED_BOUNDS)
    for prompt_id, (temperature, max_tokens, role) in EXPECTED_BOUNDS.items():
        prompt = prompts[prompt_id]
        assert prompt.temperature == pytest.approx(temperature)
        assert prompt.max_tokens == max_tokens
        assert prompt.model_role == role


def test_templates_render_literal_json_braces():
    rendered = get_prompt("communication_tips").render(
        scenario_type="dementia_care", patient_background="Retired nurse", current_issue="Refusing lunch"
    )
    assert '"tips": [' in rendered
    assert "{{" not in rendered
    assert "CURRENT ISSUE: Refusing lunch" in rendered


def test_unknown_prompt_id_raises_key_error():
    with pytest.raises(KeyError):
        get_prompt("does_not_exist")


def test_prompt_without_token_bound_is_rejected(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text(
        json.dumps(
            {
                "id": "broken",
                "prompt_version": "v0",
                "label": "Broken",
                "model_role": "coach",
                "temperature": 0.2,
                "max_tokens": 0,
                "system_template": "x",
                "user_message": "y",
            }
        ),
        encoding="utf-8",
    )
    with pytest.raises(ValueError, match="max_tokens"):
        _load_prompt(path)
