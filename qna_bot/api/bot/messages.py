"""
User-facing strings for the QnA bot.
"""

ANSWER_SELECTION_PROMPT = "Did you mean:"
NONE_OF_THE_ABOVE_OPTION = "None of the above"
SELECTION_RETRY_PROMPT = "Please pick one of the options below."

RATING_SELECTION_PROMPT = "How would you rate this conversation?"
RATING_OPTIONS = ("\U0001F604", "\U0001F642", "\U0001F610", "\U0001F641", "\U0001F621")
RATING_LABELS = {
    "\U0001F604": "excellent",
    "\U0001F642": "very_good",
    "\U0001F610": "good",
    "\U0001F641": "average",
    "\U0001F621": "poor",
}

WELCOME_MESSAGE = (
    "Hello, I am {persona}, your {role}. "
    "Please type your query and I would be happy to help. Type Thanks when you want to exit."
)
GOODBYE_MESSAGE = (
    "Nice speaking with you {member}. Hope you enjoyed the conversation. Feel free to contact me anytime."
)
DEFAULT_MEMBER_NAME = "there"

TURN_ERROR_MESSAGE = "Sorry, something went wrong on my side. Please ask your question again."
