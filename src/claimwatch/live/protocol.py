# Live streaming wire protocol: frame builders and the listening prompt.
# Created: 2026-10-18

from __future__ import annotations

from typing import Any

DETECT_CLAIM = "detect_claim"

LISTENING_PROMPT = """
You are a high-sensitivity, objective Fact-Checking Listener.
Your sole purpose is to monitor audio for any assertion of fact, meaning any
statement that describes a specific event, statistic, behavior, or condition
in the physical world.

You must trigger the detect_claim tool for any statement that meets any of the following examples:
- Statistical/Numerical: "GDP grew by 5%," "Prices are up 40%."
- Behavioral/Event-based: "People in [Location] are [Action]," "The protest started at 5 PM."
- Historical/Causal: "This law caused the deficit to rise," "He said X in 2012."
- Comparative: "Company A is bigger than Company B."
- Definitional: "A [Category] is defined as [Definition]."

Plausibility Independent: Detect the claim even if it sounds improbable, exaggerated, or inflammatory.
Look for context: If the claim is connected to a previous claim, call the tool with the combined claim.
Only group claims that are directly related to each other.
If the context of the claim is longer than 10 seconds, call the tool with the combined claims up until
this point and start a new claim context for following claims.
Only call the tool if it is an actual statement of fact. Do not call it for opinions, personal beliefs,
or subjective statements.
Ignore Sentiment: Do not let the tone (angry, joking, sarcastic) prevent you from extracting the underlying claim.
Do NOT transcribe normal conversation. Only extract claims.
Do NOT generate audio or text responses. Remain silent and only use the tool.
"""

DETECT_CLAIM_DECLARATION: dict[str, Any] = {
    "name": DETECT_CLAIM,
    "description": (
        "Call this function immediately when you detect a distinct, checkable factual claim "
        "in the audio stream. Use the same language as the audio stream for the claim title "
        "and claim text."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "claim_title": {
                "type": "string",
                "description": "The concise title that describes the claim.",
            },
            "claim_text": {
                "type": "string",
                "description": "The summarized factual claim.",
            },
        },
        "required": ["claim_title", "claim_text"],
    },
}

ACK_RESULT = {"result": "Claim processing started"}


def setup_frame(model: str, prompt: str = LISTENING_PROMPT) -> dict[str, Any]:
    return {
        "setup": {
            "model": model,
            "generation_config": {"response_modalities": ["AUDIO"]},
            "system_instruction": {"parts": [{"text": prompt}]},
            "tools": [{"function_declarations": [DETECT_CLAIM_DECLARATION]}],
        }
    }


def audio_frame(data: str, mime_type: str) -> dict[str, Any]:
    return {"realtime_input": {"media_chunks": [{"mime_type": mime_type, "data": data}]}}


def tool_response_frame(
    name: str, call_id: str | None, response: dict[str, Any] | None = None
) -> dict[str, Any]:
    return {
        "tool_response": {
            "functionResponses": [
                {"name": name, "response": response or ACK_RESULT, "id": call_id}
            ],
        }
    }
