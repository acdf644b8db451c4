"""
QnA Support Bot - customer-support chatbot for the Microsoft Bot Framework.

Provides:
- Multi-source QnA Maker answer aggregation with confidence gating
- Clarification prompts for ambiguous answers with active-learning feedback
- Welcome, goodbye and rating exchanges
- FastAPI webhook for Bot Framework activities
"""

__version__ = "1.0.0"
