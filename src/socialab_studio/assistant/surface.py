"""Chat surface.

Wires the stream client, approval bridge, image synchronizer and side-channel
dispatcher together and exposes user intents as bridge responses. The surface
owns only presentation state (reference image, gallery snapshot, notices and
the external-edit inbox); transcript and approval state live in the client.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable
from uuid import uuid4

from socialab_studio.assistant.approval_bridge import ApprovalBridge, EditOutcome
from socialab_studio.assistant.attachments import (
    AttachmentUploader,
    DataUrlUploader,
    LocalFile,
    select_image_files,
    upload_image,
)
from socialab_studio.assistant.data_stream import DataStreamDispatcher
from socialab_studio.assistant.extractor import (
    PendingApproval,
    pending_approvals,
    pending_edit_requests,
)
from socialab_studio.assistant.image_sync import ImageReferenceSynchronizer
from socialab_studio.assistant.models import (
    ChatReferenceImage,
    ChatStatus,
    DataStreamEvent,
    DataStreamEventType,
    FilePart,
    GalleryImage,
    ImageEditRequest,
    Message,
    PendingExternalEdit,
    ToolInvocationPart,
)
from socialab_studio.assistant.notices import Notice, NoticeBoard, NoticeLevel
from socialab_studio.assistant.payload import RequestBuilder, infer_image_media_type
from socialab_studio.assistant.stream_client import MessageStreamClient
from socialab_studio.assistant.transport import ChatTransport
from socialab_studio.assistant.update_queue import UpdateQueue
from socialab_studio.config.constants import (
    ATTACHED_IMAGE_TEXT,
    DROPPED_IMAGE_TEXT,
    UPLOADED_REFERENCE_TEXT,
)
from socialab_studio.config.logging import get_logger
from socialab_studio.config.settings import Settings, get_settings
from socialab_studio.exceptions import (
    ChatBusyError,
    SocialabStudioError,
    StreamError,
    UploadError,
    ValidationError,
)
from socialab_studio.utils.bridge_types import bridge_error, bridge_ok

logger = get_logger(__name__)
EditRequestCallback = Callable[[ImageEditRequest], None]
GalleryRefreshCallback = Callable[[DataStreamEvent], None]


@dataclass
class LoadingIndicator:
    stage: str  # "thinking" before the first delta, "generating" after

    def to_dict(self) -> dict:
        return {"stage": self.stage}


@dataclass
class SurfaceView:
    """Everything needed to render the panel."""

    status: ChatStatus
    messages: list[Message] = field(default_factory=list)
    pending_approvals: list[PendingApproval] = field(default_factory=list)
    loading: LoadingIndicator | None = None
    notices: list[Notice] = field(default_factory=list)
    reference_image: ChatReferenceImage | None = None
    can_send: bool = True

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "messages": [m.to_wire() for m in self.messages],
            "pendingApprovals": [
                {
                    "approvalId": p.approval_id,
                    "toolCallId": p.tool_call_id,
                    "toolName": p.tool_name,
                    "input": p.input,
                }
                for p in self.pending_approvals
            ],
            "loading": self.loading.to_dict() if self.loading else None,
            "notices": [n.to_dict() for n in self.notices],
            "referenceImage": self.reference_image.to_wire() if self.reference_image else None,
            "canSend": self.can_send,
        }


class ChatSurface:
    """Assistant panel state and intents."""

    def __init__(
        self,
        transport: ChatTransport,
        *,
        chat_id: str | None = None,
        settings: Settings | None = None,
        uploader: AttachmentUploader | None = None,
        notices: NoticeBoard | None = None,
        brand_profile: dict[str, Any] | None = None,
        on_request_image_edit: EditRequestCallback | None = None,
        on_gallery_refresh: GalleryRefreshCallback | None = None,
    ):
        s = settings or get_settings()
        self._settings = s
        self._transport = transport
        self._uploader = uploader or DataUrlUploader()
        self.notices = notices or NoticeBoard(ttl=s.socialab_notice_ttl)
        self.brand_profile = brand_profile
        self.on_request_image_edit = on_request_image_edit
        self.on_gallery_refresh = on_gallery_refresh
        self._external_edit_tools = tuple(s.socialab_external_edit_tools)
        self._reference: ChatReferenceImage | None = None
        self._turn_reference: ChatReferenceImage | None = None
        self._gallery: list[GalleryImage] = []
        self._pending_external_edit: PendingExternalEdit | None = None
        self._requested_edits: set[str] = set()
        self._syncing = False
        self.updates = UpdateQueue()
        self.synchronizer = ImageReferenceSynchronizer()
        self.dispatcher = DataStreamDispatcher()
        self._register_side_channel()
        self.client = self._build_client(chat_id or str(uuid4()))
        self.bridge = ApprovalBridge(self.client)

    def _build_client(self, chat_id: str) -> MessageStreamClient:
        requests = RequestBuilder.from_settings(
            chat_id, self._settings, extras=self._request_extras
        )
        return MessageStreamClient(
            self._transport,
            requests,
            auto_resume=self._settings.socialab_auto_resume,
            on_update=self._on_client_update,
            on_error=self._on_stream_error,
        )

    def _request_extras(self) -> dict[str, Any]:
        ref = self._turn_reference
        return {
            "brandProfile": self.brand_profile,
            "chatReferenceImage": ref.to_wire() if ref else None,
        }

    # === Read side ===
    @property
    def reference_image(self) -> ChatReferenceImage | None:
        return self._reference

    @property
    def pending_external_edit(self) -> PendingExternalEdit | None:
        return self._pending_external_edit

    @property
    def gallery(self) -> list[GalleryImage]:
        return list(self._gallery)

    def view(self) -> SurfaceView:
        status = self.client.status
        approvals = pending_approvals(self.client.transcript, self._external_edit_tools)
        loading = None
        if status.is_busy and not approvals:
            stage = "thinking" if status == ChatStatus.SUBMITTED else "generating"
            loading = LoadingIndicator(stage=stage)
        return SurfaceView(
            status=status,
            messages=self.client.transcript.messages,
            pending_approvals=approvals,
            loading=loading,
            notices=self.notices.active(),
            reference_image=self._reference,
            can_send=not status.is_busy,
        )

    # === Intents ===
    async def send(self, text: str = "") -> dict:
        """Send typed text, folding in the attached reference image."""
        ref = self._reference
        if not text.strip() and ref is None:
            return bridge_error("Type a message or attach an image")
        if self.client.status.is_busy:
            return bridge_error("The assistant is still replying")
        files = []
        if ref is not None:
            media_type = infer_image_media_type(ref.src)
            files.append(FilePart(media_type=media_type, name=ref.id, url=ref.src))
        message = Message.user(text if text.strip() else ATTACHED_IMAGE_TEXT, files)
        # The reference now lives in the message
        self._reference = None
        self._turn_reference = ref
        try:
            await self.client.send(message)
        except (ChatBusyError, ValidationError) as e:
            self._reference = ref
            return bridge_error(e.message)
        finally:
            self._turn_reference = None
        await self.refresh()
        return self._turn_response(message)

    def _turn_response(self, message: Message) -> dict:
        if self.client.status == ChatStatus.ERROR and self.client.error is not None:
            return bridge_error(self.client.error.message)
        return bridge_ok({"messageId": message.id})

    def attach_reference(self, image_id: str, src: str) -> dict:
        """Attach a gallery image to the next message, replacing any previous one."""
        if not image_id or not src:
            return bridge_error("Image id and src are required")
        self._reference = ChatReferenceImage(id=image_id, src=src)
        return bridge_ok(self._reference.to_wire())

    def clear_reference(self) -> dict:
        self._reference = None
        return bridge_ok()

    async def upload_file(self, file: LocalFile) -> dict:
        """Send a picked image straight into the chat."""
        return await self._send_local_image(file, UPLOADED_REFERENCE_TEXT)

    async def drop_files(self, files: Iterable[LocalFile]) -> dict:
        """Send the first dropped image into the chat; non-images are rejected."""
        try:
            file = select_image_files(files)
        except ValidationError as e:
            self.notices.push(e.message)
            return bridge_error(e.message)
        return await self._send_local_image(file, DROPPED_IMAGE_TEXT.format(name=file.name))

    async def _send_local_image(self, file: LocalFile, text: str) -> dict:
        if self.client.status.is_busy:
            return bridge_error("The assistant is still replying")
        try:
            url = await upload_image(self._uploader, file)
        except (ValidationError, UploadError) as e:
            self.notices.push(e.message)
            return bridge_error(e.message)
        part = FilePart(media_type=file.media_type, name=file.name, url=url)
        message = Message.user(text, [part])
        try:
            await self.client.send(message)
        except SocialabStudioError as e:
            return bridge_error(e.message)
        await self.refresh()
        return self._turn_response(message)

    async def approve(self, approval_id: str) -> dict:
        recorded = await self.bridge.approve(approval_id)
        await self.refresh()
        return bridge_ok({"recorded": recorded})

    async def deny(self, approval_id: str, reason: str | None = None) -> dict:
        recorded = await self.bridge.deny(approval_id, reason)
        await self.refresh()
        return bridge_ok({"recorded": recorded})

    async def set_gallery(self, images: Iterable[GalleryImage | dict]) -> dict:
        """Replace the gallery snapshot and resync image references."""
        self._gallery = [
            img if isinstance(img, GalleryImage) else GalleryImage.model_validate(img)
            for img in images
        ]
        await self.refresh()
        return bridge_ok({"count": len(self._gallery)})

    async def receive_external_edit(self, edit: PendingExternalEdit | dict) -> dict:
        """Put an editor decision in the inbox (last write wins) and process it."""
        if isinstance(edit, dict):
            edit = PendingExternalEdit.model_validate(edit)
        if self._pending_external_edit is not None:
            logger.debug("Replacing held edit for %s", self._pending_external_edit.tool_call_id)
        self._pending_external_edit = edit
        await self.refresh()
        return bridge_ok({"pending": self._pending_external_edit is not None})

    def stop(self) -> dict:
        self.client.stop()
        return bridge_ok()

    def new_chat(self) -> dict:
        """Start a fresh conversation with a new chat id."""
        if self.client.status.is_busy:
            return bridge_error("Stop the current reply before starting a new chat")
        self.client = self._build_client(str(uuid4()))
        self.bridge = ApprovalBridge(self.client)
        self.dispatcher.dispatch(self.client.data_stream)
        self.synchronizer.reset()
        self._pending_external_edit = None
        self._requested_edits.clear()
        self._reference = None
        self.notices.clear()
        logger.info("Started new chat %s", self.client.chat_id)
        return bridge_ok({"chatId": self.client.chat_id})

    # === Effects ===
    async def pump(self) -> int:
        """Run queued updates from other threads, then the reactive effects."""
        count = await self.updates.drain()
        await self.refresh()
        return count

    async def refresh(self) -> None:
        """Run every reactive effect against the current state."""
        self._sync_effects()
        if await self.client.maybe_auto_resume():
            self._sync_effects()

    def _sync_effects(self) -> None:
        """Effects that need no await; also run on every client update."""
        if self._syncing:
            return
        self._syncing = True
        try:
            self.dispatcher.dispatch(self.client.data_stream)
            result = self.synchronizer.sync(self._gallery, self.client.transcript, self._reference)
            if result.reference_changed:
                self._reference = result.reference
            self._apply_held_edit()
            self._emit_edit_request()
        finally:
            self._syncing = False

    def _apply_held_edit(self) -> EditOutcome | None:
        edit = self._pending_external_edit
        if edit is None:
            return None
        outcome = self.bridge.apply_external_edit(edit)
        if outcome != EditOutcome.MISSING_TARGET:
            self._pending_external_edit = None
        elif self._held_edit_is_stale(edit):
            logger.info("Dropping external edit for %s, no such tool call", edit.tool_call_id)
            self._pending_external_edit = None
        # Otherwise a live stream may still deliver the target
        return outcome

    def _held_edit_is_stale(self, edit: PendingExternalEdit) -> bool:
        """A held edit is stale once no stream can deliver its tool call.

        That is when the client is idle, or when a different edit call
        already waits on the editor.
        """
        if not self.client.status.is_busy:
            return True
        waiting = pending_edit_requests(self.client.transcript, self._external_edit_tools)
        return any(part.tool_call_id != edit.tool_call_id for _, part in waiting)

    def _emit_edit_request(self) -> None:
        """Ask the external editor to open for the first unrequested edit call."""
        if self.on_request_image_edit is None or self._pending_external_edit is not None:
            return
        for _, part in pending_edit_requests(self.client.transcript, self._external_edit_tools):
            if part.tool_call_id in self._requested_edits:
                continue
            self._requested_edits.add(part.tool_call_id)
            request = ImageEditRequest(
                tool_call_id=part.tool_call_id,
                tool_name=part.tool_name,
                prompt=str((part.input or {}).get("prompt", "")),
                image_id=self._edit_target_id(part),
            )
            logger.info("Requesting external edit for %s", part.tool_call_id)
            self.on_request_image_edit(request)
            return

    def _edit_target_id(self, part: ToolInvocationPart) -> str:
        args = part.input or {}
        for key in ("imageId", "referenceImageId"):
            if args.get(key):
                return str(args[key])
        for msg in reversed(self.client.transcript.messages):
            if msg.role == "user" and msg.file_parts:
                return msg.file_parts[-1].name
        return self._reference.id if self._reference else ""

    def _on_client_update(self) -> None:
        # Side effects that need no await run as deltas arrive
        self._sync_effects()

    def _on_stream_error(self, error: StreamError) -> None:
        self.notices.push(error.message)

    def _register_side_channel(self) -> None:
        for kind in (DataStreamEventType.IMAGE_ERROR, DataStreamEventType.LOGO_ERROR):
            self.dispatcher.register(kind, self._notify_generation_error)
        for kind in (
            DataStreamEventType.IMAGE_CREATED,
            DataStreamEventType.IMAGE_EDITED,
            DataStreamEventType.LOGO_CREATED,
        ):
            self.dispatcher.register(kind, self._request_gallery_refresh)

    def _notify_generation_error(self, event: DataStreamEvent) -> None:
        self.notices.push(str(event.data.get("error") or "Image generation failed"))

    def _request_gallery_refresh(self, event: DataStreamEvent) -> None:
        if self.on_gallery_refresh is not None:
            self.on_gallery_refresh(event)
        else:
            self.notices.push("New image added to the gallery", NoticeLevel.INFO)
