"""State-transition task execution.

One inbound message names a pre-state and a number of blocks stored under
``{spec version}/{spec config}/{key}/``. The worker stages them into a private
directory, runs the client's transition command on them, hashes the post-state,
uploads output and logs under a per-attempt prefix and publishes one result
record. The message is acked only after the record is out; everything else is
rejected and left to the subscription's redelivery.

Modules, bottom-up:

- ``contracts``: wire formats and object-key layout.
- ``workdir``: per-attempt staging directories.
- ``inputs``: ordered download of pre-state and blocks.
- ``backend``: subprocess execution of the transition command.
- ``fingerprint``: SHA-256 of the post-state.
- ``publisher``: uploads plus result record emission.
- ``coordinator``: one message through the whole pipeline.
- ``worker``: bounded pool fed by the subscription.
"""
