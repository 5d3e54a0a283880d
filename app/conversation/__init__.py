"""
Conversation Module
Conversational flight search and booking: session store, dialogue
orchestrator, booking flow and the shared data models.
"""
