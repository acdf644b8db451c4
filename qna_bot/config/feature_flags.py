"""
Feature flags for the QnA bot.
Set in .env.local or environment variables.

Feature Flags:
==============
User Experience:
- ENABLE_CHOICE_CARDS: Render clarification and rating prompts as Adaptive Cards
  Default: false (suggested-action buttons work on every channel)
- ENABLE_RATING_PROMPT: Ask for an emoji rating when the user says goodbye
  Default: true

Knowledge Base:
- ENABLE_ACTIVE_LEARNING: Report clarification choices back to QnA Maker
  Default: true
"""
import os
from dotenv import load_dotenv

load_dotenv('.env.local')

# UX features
ENABLE_CHOICE_CARDS = os.getenv('ENABLE_CHOICE_CARDS', 'false').lower() == 'true'
ENABLE_RATING_PROMPT = os.getenv('ENABLE_RATING_PROMPT', 'true').lower() == 'true'

# Knowledge base learning
ENABLE_ACTIVE_LEARNING = os.getenv('ENABLE_ACTIVE_LEARNING', 'true').lower() == 'true'
