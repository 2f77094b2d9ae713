"""
Prompt Templates

Builds the instruction prompts for the scene composition model and the
image-to-video model.
"""

from typing import Literal

Tone = Literal["professional", "casual", "dramatic", "humorous"]
CameraStyle = Literal["static", "slow_pan", "dynamic"]

TONE_DESCRIPTIONS: dict[str, str] = {
    "professional": "Professional and articulate tone, clear speech, thoughtful expressions",
    "casual": "Relaxed and friendly tone, natural pauses, warm expressions",
    "dramatic": "Intense and emotional tone, expressive faces, dramatic pauses",
    "humorous": "Light-hearted and playful tone, occasional smiles, animated expressions",
}

CAMERA_DESCRIPTIONS: dict[str, str] = {
    "static": "Camera remains static, focused on both subjects",
    "slow_pan": "Camera slowly pans between speakers during their turns",
    "dynamic": "Camera has subtle movement, creating a cinematic feel",
}


def build_scene_prompt(scenario: str) -> str:
    """
    Composite instruction for the scene model.

    Person from the first reference goes left, the second goes right, both
    keep their facial identity, landscape 16:9 and photorealistic.
    """
    scenario = scenario.strip().rstrip(".")
    return (
        f"Create a realistic photographic scene. {scenario}.\n"
        "Left side of the image: the person from the first reference image, naturally positioned.\n"
        "Right side of the image: the person from the second reference image, naturally positioned.\n"
        "Both people should be facing each other or slightly angled toward each other.\n"
        "Maintain the exact facial features and appearance of both reference people.\n"
        "Natural lighting, high quality, photorealistic. Landscape orientation 16:9."
    )


def build_video_prompt(
    scenario: str,
    tone: str = "professional",
    camera_style: str = "static",
    include_audio: bool = True,
) -> str:
    """Default action prompt: the scenario plus dialogue and body-language direction."""
    tone_line = TONE_DESCRIPTIONS.get(tone, TONE_DESCRIPTIONS["professional"])
    camera_line = CAMERA_DESCRIPTIONS.get(camera_style, CAMERA_DESCRIPTIONS["static"])

    prompt = (
        f"Two people having a conversation: {scenario.strip()}\n"
        "\n"
        "Visual Direction:\n"
        f"- {camera_line}\n"
        "- Both characters show natural expressions and subtle head movements while speaking\n"
        "- Realistic lip synchronization with speech\n"
        "- Natural eye contact and body language\n"
        f"- {tone_line}"
    )

    if include_audio:
        prompt += (
            "\n\n"
            "Audio Direction:\n"
            "- Generate natural dialogue synchronized with lip movements\n"
            "- Include appropriate ambient room sound\n"
            "- Clear, distinct voices for each speaker\n"
            "- Natural conversation rhythm with pauses and reactions"
        )

    return prompt


def build_conversation_context(
    scenario: str,
    speaker_a: str = "Person A",
    speaker_b: str = "Person B",
) -> str:
    """Dialogue framing for callers that write their own action prompt."""
    return (
        f"{speaker_a} and {speaker_b} are having a conversation. {scenario.strip().rstrip('.')}.\n"
        "Generate realistic dialogue between them with natural back-and-forth exchanges.\n"
        "Each person should speak 2-3 sentences before the other responds."
    )
