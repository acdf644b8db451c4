"""
Bot Framework integration: QnA dialog, confidence handlers, conversation state
and the activity webhook.
"""
