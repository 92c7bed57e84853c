from typing import Optional

from ..errors import IdentityError
from ..models import Participant
from .interfaces import IdentityProvider


class StaticIdentity(IdentityProvider):
    """Identity resolved once at sign-in, e.g. by ``RemoteBackend.login``.

    ``StaticIdentity(None)`` stands for a signed-out session.
    """

    def __init__(self, participant: Optional[Participant]):
        self.participant = participant

    def _require(self) -> Participant:
        if self.participant is None:
            raise IdentityError("No participant is signed in")
        return self.participant

    def current_participant_id(self) -> str:
        return self._require().id

    def current_display_name(self) -> str:
        return self._require().display_name

    def sign_out(self):
        self.participant = None
