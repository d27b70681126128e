"""Upload item lifecycle finite state machine.

Each item in an orchestrator run gets its own FSM instance.  The FSM only
validates transition legality; the orchestrator records the resulting
state and error on the item itself.
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from bulkimg.models import ItemState
from bulkimg.upload.exceptions import ItemStateError


class UploadItemSM(StateMachine):
    """Six-state lifecycle for one image's journey through the upload.

    States:
        pending         -- Slot issued, transfer not yet started.
        transferring    -- Multipart POST to storage in flight.
        transferred     -- Bytes stored, waiting for the attach call.
        transfer_failed -- Storage transfer failed; never attached.
        attached        -- Media attached to the record.
        attach_failed   -- Attach reported an error for this item.

    ``transfer_failed``, ``attached`` and ``attach_failed`` are final: no
    event leaves them.  ``start_value`` still positions an FSM at any state.
    """

    pending = State("pending", initial=True, value=ItemState.PENDING.value)
    transferring = State("transferring", value=ItemState.TRANSFERRING.value)
    transferred = State("transferred", value=ItemState.TRANSFERRED.value)
    transfer_failed = State(
        "transfer_failed", value=ItemState.TRANSFER_FAILED.value, final=True
    )
    attached = State("attached", value=ItemState.ATTACHED.value, final=True)
    attach_failed = State(
        "attach_failed", value=ItemState.ATTACH_FAILED.value, final=True
    )

    start_transfer = pending.to(transferring)
    complete_transfer = transferring.to(transferred)
    fail_transfer = transferring.to(transfer_failed)
    complete_attach = transferred.to(attached)
    fail_attach = transferred.to(attach_failed)


def create_fsm(current_state: ItemState | str = ItemState.PENDING) -> UploadItemSM:
    """Create an FSM instance positioned at *current_state*."""
    return UploadItemSM(start_value=ItemState(current_state).value)


def advance(fsm: UploadItemSM, event: str) -> ItemState:
    """Fire *event* on *fsm* and return the new state.

    Raises:
        ItemStateError: If the event is not legal from the current state.
    """
    try:
        fsm.send(event)
    except TransitionNotAllowed as exc:
        raise ItemStateError(
            f"Illegal transition {event!r} from {fsm.current_state.value!r}"
        ) from exc
    return ItemState(fsm.current_state.value)
