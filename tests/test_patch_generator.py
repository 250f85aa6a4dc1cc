"""
Patch generator tests
"""
import asyncio

from script_healer.diagnosis import rule_based_diagnosis
from script_healer.models import UserReference
from script_healer.patch_generator import PatchGenerator, build_fix_prompt, cleanup_generated_script

from tests.helpers import CannedAdvisory, FailingAdvisory, SlowAdvisory, element, snapshot

SCRIPT = "sleep(500);\nclick(200, 430);"


def current_screen():
    return snapshot(
        element("Login", element_id="com.app:id/btn_login", bounds=(100, 400, 300, 460)),
        element("Cancel", element_id="com.app:id/btn_cancel", bounds=(320, 400, 520, 460)),
    )


def generate(generator, **kwargs):
    diagnosis = rule_based_diagnosis("click coordinate out of screen")
    return asyncio.run(generator.generate_patch(SCRIPT, diagnosis, current_screen(), 1, **kwargs))


def test_cleanup_extracts_fenced_code():
    reply = "Here is the fix:\n```javascript\nsleep(1000);\ntext(\"Login\").click();\n```\nGood luck."

    assert cleanup_generated_script(reply) == 'sleep(1000);\ntext("Login").click();'


def test_cleanup_plain_reply():
    assert cleanup_generated_script('  text("Login").click();  ') == 'text("Login").click();'
    assert cleanup_generated_script("") == ""


def test_fix_prompt_lists_selectors_and_intent():
    diagnosis = rule_based_diagnosis("click coordinate out of screen")

    prompt = build_fix_prompt(SCRIPT, diagnosis, current_screen(),
                              UserReference(description="Press login"), attempt_number=2)

    assert "Failure cause: stale-coordinates" in prompt
    assert 'text("Login") or id("btn_login")' in prompt
    assert "center: (200, 430)" in prompt
    assert "Expected behaviour: Press login" in prompt
    assert "repair attempt 2" in prompt


def test_advisory_patch_is_cleaned():
    advisory = CannedAdvisory(generation_reply='```js\ntext("Login").findOne(5000).click();\n```')

    candidate = generate(PatchGenerator(advisory))

    assert candidate == 'text("Login").findOne(5000).click();'
    assert len(advisory.prompts) == 1


def test_empty_advisory_patch_falls_back_to_rules():
    candidate = generate(PatchGenerator(CannedAdvisory(generation_reply="```\n```")),
                         user_intent=UserReference(description="login"))

    assert 'text("Login").findOne(' in candidate


def test_failed_advisory_falls_back_to_rules():
    advisory = FailingAdvisory()

    candidate = generate(PatchGenerator(advisory, find_timeout_ms=1234))

    assert advisory.calls == 1
    assert candidate.split("\n")[1] == 'var target = text("Login").findOne(1234);'


def test_slow_advisory_falls_back_to_rules():
    candidate = generate(PatchGenerator(SlowAdvisory(delay=5)), timeout=0.05)

    assert "click(200, 430)" not in candidate


def test_rules_return_script_unchanged_when_nothing_applies():
    generator = PatchGenerator()
    script = 'sleep(500);\nlog("done");'

    candidate = generator.rule_based_patch(script, rule_based_diagnosis("boom"), current_screen())

    assert candidate == script
