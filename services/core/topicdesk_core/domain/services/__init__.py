"""Domain services for Topicdesk Core."""
