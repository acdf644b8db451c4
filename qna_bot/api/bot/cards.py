"""
Adaptive Cards for the QnA bot.
Used for clarification and rating prompts when ENABLE_CHOICE_CARDS is on.
"""
from typing import Any, Dict, List, Optional

ADAPTIVE_CARD_CONTENT_TYPE = "application/vnd.microsoft.card.adaptive"

# Key in Action.Submit data that carries the chosen option on non-Teams channels
SELECTION_VALUE_KEY = "selection"


def _option_action(option: str) -> Dict[str, Any]:
    return {
        "type": "Action.Submit",
        "title": option,
        "data": {
            SELECTION_VALUE_KEY: option,
            "msteams": {
                "type": "imBack",
                "value": option
            }
        }
    }


def create_choice_card(
    prompt: str,
    options: List[str],
    original_query: Optional[str] = None
) -> Dict[str, Any]:
    """
    Create Adaptive Card presenting a multiple-choice prompt.

    Each option is a submit button that posts the option text back, so the
    reply is resolved exactly like a typed answer.

    Args:
        prompt: Question shown above the options
        options: Option titles in display order
        original_query: User's question, shown for context

    Returns:
        Adaptive Card JSON
    """
    body_elements = [
        {
            "type": "TextBlock",
            "text": prompt,
            "weight": "Bolder",
            "size": "Medium",
            "wrap": True
        }
    ]

    if original_query:
        body_elements.append({
            "type": "TextBlock",
            "text": f"Your question: \"{original_query}\"",
            "wrap": True,
            "isSubtle": True,
            "size": "Small",
            "spacing": "Small"
        })

    return {
        "contentType": ADAPTIVE_CARD_CONTENT_TYPE,
        "content": {
            "$schema": "http://adaptivecards.io/schemas/adaptive-card.json",
            "type": "AdaptiveCard",
            "version": "1.2",
            "body": body_elements,
            "actions": [_option_action(option) for option in options]
        }
    }
