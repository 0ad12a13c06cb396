"""Side channels of the library backend: mail, push notifications and the reminder job."""
