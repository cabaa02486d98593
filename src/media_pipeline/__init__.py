"""Media transform pipeline for guest-captured event media.

The package turns a session's captured photos, bursts or clips into a single
shareable asset (image, animated GIF or MP4). Work is accepted over HTTP by the
job dispatcher, executed asynchronously by a worker pool and recorded against
the session document as a durable processing state machine.
"""
