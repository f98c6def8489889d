"""Post-meeting pipeline -- transcription, agenda summarization, and delivery.

MinutesPipeline claims a concluded session, transcribes its recording,
summarizes the transcript per agenda item (chunked for long meetings),
extracts action items onto the task board, and hands off to
MinutesFinalizer, which renders the two-column PDF and emails attendees.
"""
