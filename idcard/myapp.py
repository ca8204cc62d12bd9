# ===================================================================
# 1. IMPORTS
# ===================================================================
import base64
import calendar
import logging
from collections.abc import Callable
from datetime import date, datetime
from functools import lru_cache
from typing import Any

from nicegui import app, events, ui

# Local application imports
from .config import Settings, load_settings
from .draft import data_change_applies, validate
from .files import SLOT_LABELS, CandidateFile, format_file_size
from .form_data_builder import FLOW_TEMPLATE_REGISTRY, Role, required_slots
from .pdf_summary import SummaryDocumentGenerator
from .services import ApplicationService, AuthService, BackendClient
from .session_store import DraftStore
from .utils import DATA_TO_CHANGE_KEY, DATE_FORMAT_STORAGE, REQUEST_CATEGORY_KEY, FormField, StepDefinition
from .verification import VerificationPhase
from .wizard import NOTICE_TIMEOUT_SECONDS, Wizard, create_wizard

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

NOTIFY_TYPES: dict[str, str] = {'error': 'negative', 'success': 'positive', 'info': 'info'}
ROLE_CARDS: list[tuple[Role, str, str]] = [
    (Role.STUDENT, 'school', 'Verify with your roll number.'),
    (Role.FACULTY, 'co_present', 'Verify with your institute email.'),
    (Role.STAFF, 'badge', 'Verify with your institute email.'),
]

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()

# ===================================================================
# 2. WIZARD WIRING (one wizard and one HTTP client per browser tab)
# ===================================================================

def build_wizard(role: Role) -> Wizard:
    settings = get_settings()
    http_client = BackendClient(settings.api_base_url, timeout=settings.http_timeout)
    ui.context.client.on_disconnect(http_client.aclose)
    return create_wizard(
        role,
        settings,
        DraftStore(app.storage.user),
        AuthService(http_client),
        ApplicationService(http_client),
        SummaryDocumentGenerator(settings.institution_name),
    )

def show_notice(wizard: Wizard) -> None:
    """Flushes the wizard's pending notice as a toast and scrolls back to the top."""
    notice = wizard.state.notice
    if notice is None:
        return
    ui.notify(notice.message, type=NOTIFY_TYPES.get(notice.severity, 'info'),
              timeout=int(NOTICE_TIMEOUT_SECONDS * 1000), multi_line=True)
    ui.run_javascript('window.scrollTo({top: 0, behavior: "smooth"})')
    wizard.dismiss_notice()

# ===================================================================
# 3. FIELD WIDGETS
# ===================================================================

def _create_composite_date_input(field: FormField, wizard: Wizard, error_message: str | None) -> None:
    """Day / month / year selects; the stored value is ISO or empty until all three are picked."""
    stored_value = wizard.state.draft.get(field.key)
    d, m, y = None, None, None
    if isinstance(stored_value, str) and stored_value:
        try:
            dt_obj = datetime.strptime(stored_value, DATE_FORMAT_STORAGE).date()
            d, m, y = dt_obj.day, dt_obj.month, dt_obj.year
        except ValueError:
            pass

    state: dict[str, int | None] = {'d': d, 'm': m, 'y': y}

    def sync_model() -> None:
        if not (state['y'] and state['m'] and state['d']):
            wizard.update_field(field.key, '')
            return
        try:
            wizard.update_field(field.key, date(state['y'], state['m'], state['d']).strftime(DATE_FORMAT_STORAGE))
        except ValueError:
            wizard.update_field(field.key, '')

    @ui.refreshable
    def day_select_container() -> None:
        def handle_day_change(e: Any) -> None:
            state['d'] = e.value
            sync_model()
        ui.select(list(range(1, 32)), value=state['d'], label='Day',
                  on_change=handle_day_change).classes('col').props('outlined dense')

    def handle_month_year_change() -> None:
        # Cap the day at the last day of the chosen month.
        if state['y'] and state['m'] and state['d']:
            max_days = calendar.monthrange(state['y'], state['m'])[1]
            if state['d'] > max_days:
                state['d'] = max_days
        day_select_container.refresh()
        sync_model()

    def handle_month_select(e: Any) -> None:
        state['m'] = e.value
        handle_month_year_change()

    def handle_year_select(e: Any) -> None:
        state['y'] = e.value
        handle_month_year_change()

    with ui.column().classes('w-full no-wrap'):
        ui.label(field.label).classes('text-caption q-mb-xs')
        with ui.row().classes('w-full items-start no-wrap'):
            day_select_container()
            ui.select(list(range(1, 13)), value=state['m'], label='Month',
                      on_change=handle_month_select).classes('col').props('outlined dense')
            ui.select(list(range(date.today().year + 40, 1900, -1)), value=state['y'], label='Year',
                      on_change=handle_year_select).classes('col').props('outlined dense')
        if error_message:
            ui.label(error_message).classes('text-negative text-caption')

def _create_text_input(f: FormField, v: Any, wizard: Wizard) -> ui.input:
    return ui.input(label=f.label, value=v or '', on_change=lambda e: wizard.update_field(f.key, e.value))

def _create_select_input(f: FormField, v: Any, wizard: Wizard) -> ui.select:
    # An empty draft value is not an option; the select starts unselected.
    return ui.select(options=f.options or [], label=f.label, value=v or None,
                     on_change=lambda e: wizard.update_field(f.key, e.value))

def _create_textarea_input(f: FormField, v: Any, wizard: Wizard) -> ui.textarea:
    return ui.textarea(label=f.label, value=v or '', on_change=lambda e: wizard.update_field(f.key, e.value))

def _create_number_input(f: FormField, v: Any, wizard: Wizard) -> ui.number:
    def handle_change(e: Any) -> None:
        wizard.update_field(f.key, '' if e.value is None else int(e.value))
    return ui.number(label=f.label, value=v if v != '' else None, min=0, step=1, format='%d',
                     on_change=handle_change)

def _create_checkbox_input(f: FormField, v: Any, wizard: Wizard) -> ui.checkbox:
    return ui.checkbox(text=f.label, value=bool(v), on_change=lambda e: wizard.update_field(f.key, e.value))

def _create_checklist_input(f: FormField, v: Any, wizard: Wizard) -> ui.column:
    selected: list[str] = list(v or [])
    with ui.column().classes('w-full q-gutter-none') as container:
        ui.label(f.label).classes('text-caption')
        with ui.row().classes('w-full'):
            for option in f.options or []:
                ui.checkbox(option, value=option in selected,
                            on_change=lambda _, o=option: wizard.update_field(f.key, o))
    return container

def create_field(field: FormField, wizard: Wizard, error_message: str | None = None,
                 on_change: Callable[[], None] | None = None) -> None:
    """Creates a UI element for one schema field, bound to the wizard's draft."""
    current_value = wizard.state.draft.get(field.key, field.default_value)

    with ui.column().classes('w-full no-wrap q-mb-sm'):
        if field.locked:
            ui.input(label=field.label, value=str(current_value or '')).props('outlined dense readonly').classes('w-full')
            return
        if field.ui_type == 'date':
            _create_composite_date_input(field, wizard, error_message)
            return

        creator_map: dict[str, Callable[..., Any]] = {
            'text': _create_text_input,
            'select': _create_select_input,
            'textarea': _create_textarea_input,
            'number': _create_number_input,
            'checkbox': _create_checkbox_input,
            'checklist': _create_checklist_input,
        }
        creator = creator_map.get(field.ui_type)
        if not creator:
            raise ValueError(f"Unsupported UI type: {field.ui_type}")

        element = creator(field, current_value, wizard)
        if on_change is not None:
            element.on_value_change(lambda _: on_change())

        if field.ui_type in ('checkbox', 'checklist'):
            if error_message:
                ui.label(error_message).classes('text-negative text-caption')
            return
        props_list: list[str] = ['outlined', 'dense']
        if field.max_length:
            props_list.append(f"maxlength={field.max_length}")
        if error_message:
            props_list.append(f"error-message=\"{error_message}\"")
            props_list.append('error')
        element.props(' '.join(props_list)).classes('w-full')

# ===================================================================
# 4. THE WIZARD VIEW
# ===================================================================

class WizardView:
    """Renders whatever step the wizard is on. Every handler ends in `refresh()`."""

    def __init__(self, wizard: Wizard) -> None:
        self.wizard = wizard
        # Inline field errors appear only after a failed attempt to continue.
        self.attempted = False
        self.pdf_bytes: bytes | None = None

    def refresh(self) -> None:
        show_notice(self.wizard)
        self.content.refresh()

    # --- navigation -------------------------------------------------
    async def _handle_step_confirmation(self, button: ui.button) -> None:
        button.disable()
        try:
            if self.wizard.advance():
                self.attempted = False
                self.pdf_bytes = None
            else:
                self.attempted = True
        finally:
            button.enable()
        self.refresh()

    def _handle_back(self) -> None:
        self.attempted = False
        self.wizard.back()
        self.refresh()

    def _nav_row(self, step_def: StepDefinition, confirm_label: str = 'Next →') -> None:
        with ui.row().classes('w-full q-mt-lg justify-between items-center'):
            if self.wizard.back_allowed():
                ui.button('← Back', on_click=self._handle_back).props('flat color=grey')
            else:
                ui.label()
            confirm_button = ui.button(confirm_label).props('color=primary unelevated')
            confirm_button.on('click', lambda: self._handle_step_confirmation(confirm_button))

    # --- verification ----------------------------------------------
    def render_verification_step(self, step_def: StepDefinition) -> None:
        wizard = self.wizard
        role = wizard.config.role
        ui.label(step_def['title']).classes('text-h6 q-mb-xs')
        ui.markdown(step_def['subtitle'])

        role_radio: ui.radio | None = None
        if role in (Role.FACULTY, Role.STAFF):
            def switch_role(e: Any) -> None:
                wizard.set_role(Role(e.value))
                self.refresh()
            role_radio = ui.radio({Role.FACULTY.value: 'Faculty', Role.STAFF.value: 'Staff'}, value=role.value,
                                  on_change=switch_role).props('inline')
            role_radio.set_enabled(wizard.verification_phase is VerificationPhase.REQUEST_OTP)

        if wizard.verification_phase is VerificationPhase.REQUEST_OTP:
            label = 'Roll Number' if role is Role.STUDENT else f"Institute Email (@{wizard.gate.domain})"
            identifier_input = ui.input(label, value=wizard.gate.identifier).props('outlined dense').classes('w-full')

            async def send_otp() -> None:
                send_button.disable()
                if role_radio is not None:
                    role_radio.disable()
                try:
                    await wizard.request_otp(identifier_input.value)
                finally:
                    send_button.enable()
                self.refresh()

            send_button = ui.button('Send OTP', on_click=send_otp).props('color=primary unelevated').classes('w-full q-mt-md')
            identifier_input.on('keydown.enter', send_otp)
            return

        ui.label(f"Enter the 6-digit code sent to {wizard.gate.email}").classes('text-body2')
        code_input = ui.input('OTP', value=wizard.gate.code).props('outlined dense maxlength=6').classes('w-full')

        async def verify() -> None:
            verify_button.disable()
            try:
                await wizard.confirm_otp(code_input.value)
            finally:
                verify_button.enable()
            self.refresh()

        def change_identifier() -> None:
            wizard.change_identifier()
            self.refresh()

        with ui.row().classes('w-full q-mt-md justify-between items-center'):
            ui.button('Change', on_click=change_identifier).props('flat color=grey')
            verify_button = ui.button('Verify', on_click=verify).props('color=primary unelevated')
        code_input.on('keydown.enter', verify)

    # --- form & documents --------------------------------------------
    def _render_form(self) -> None:
        wizard = self.wizard
        errors = validate(wizard.state.draft, wizard.state.role) if self.attempted else {}
        for field in wizard.config.schema_fields:
            if field.key == DATA_TO_CHANGE_KEY and not data_change_applies(wizard.state.draft, wizard.config):
                continue
            # The category decides which follow-up fields and documents are shown.
            on_change = self.content.refresh if field.key == REQUEST_CATEGORY_KEY else None
            create_field(field, wizard, errors.get(field.key), on_change=on_change)

    def _render_slot(self, slot_name: str, required: bool) -> None:
        wizard = self.wizard
        file_slot = wizard.state.files.get(slot_name)
        label = SLOT_LABELS.get(slot_name, slot_name) + (' *' if required else '')

        async def handle_upload(e: events.UploadEventArguments) -> None:
            candidate = CandidateFile(filename=e.file.name, content=await e.file.read(),
                                      mime_type=e.file.content_type)
            await wizard.attach_file(slot_name, candidate)
            self.refresh()

        def handle_remove() -> None:
            wizard.remove_file(slot_name)
            self.refresh()

        with ui.card().classes('w-full q-mb-md').props('bordered flat'):
            ui.label(label).classes('text-bold text-body1')
            if file_slot is None:
                resumed = wizard.state.resumed_file_names.get(slot_name)
                if resumed:
                    ui.label(f"Previously attached: {resumed}. Please attach it again.").classes('text-caption text-grey')
                ui.upload(on_upload=handle_upload, auto_upload=True, max_files=1).props('accept="image/*,.pdf" flat bordered').classes('w-full')
                return
            with ui.row().classes('w-full items-center no-wrap'):
                if file_slot.preview_data_uri:
                    ui.image(file_slot.preview_data_uri).classes('w-24 h-24').props('fit=cover')
                else:
                    ui.icon('picture_as_pdf', size='xl', color='grey-7')
                with ui.column().classes('col'):
                    ui.label(file_slot.filename)
                    ui.label(format_file_size(file_slot.size_bytes)).classes('text-caption text-grey')
                ui.button(icon='delete_outline', on_click=handle_remove, color='grey-6').props('flat dense round')

    def _render_documents(self) -> None:
        wizard = self.wizard
        needed = required_slots(wizard.config.template, wizard.state.draft.get(REQUEST_CATEGORY_KEY))
        policy = wizard.config.file_policy
        for slot_name in wizard.state.files.slot_names:
            if slot_name in needed or wizard.state.files.has(slot_name):
                self._render_slot(slot_name, slot_name in needed)
        ui.label(f"Maximum file size: {policy.max_mb('photo'):g}MB for the photograph.").classes('text-caption text-grey')

    def render_generic_step(self, step_def: StepDefinition) -> None:
        ui.label(step_def['title']).classes('text-h6 q-mb-xs')
        ui.markdown(step_def['subtitle'])
        if step_def['shows_form']:
            self._render_form()
        if step_def['shows_documents']:
            if step_def['shows_form']:
                ui.separator().classes('q-my-md')
            self._render_documents()
        self._nav_row(step_def)

    # --- preview -------------------------------------------------------
    def render_preview_step(self, step_def: StepDefinition) -> None:
        """Details table, attached files and an on-demand PDF preview in an iframe."""
        wizard = self.wizard
        ui.label(step_def['title']).classes('text-h6 q-mb-md')
        ui.markdown(step_def['subtitle'])

        rows = [{'label': label, 'value': text} for label, text in wizard.preview_rows()]
        ui.table(columns=[
            {'name': 'label', 'label': 'Field', 'field': 'label', 'align': 'left'},
            {'name': 'value', 'label': 'Value', 'field': 'value', 'align': 'left'},
        ], rows=rows, row_key='label').props('flat dense').classes('w-full')

        for slot_name, file_slot in wizard.state.files.present().items():
            ui.label(f"{SLOT_LABELS.get(slot_name, slot_name)}: {file_slot.filename} "
                     f"({format_file_size(file_slot.size_bytes)})").classes('text-body2')

        preview_container = ui.card().classes('w-full shadow-2 q-mt-md').style('height: 65vh; padding: 0;')

        def fill_preview() -> None:
            preview_container.clear()
            with preview_container:
                if self.pdf_bytes is None:
                    with ui.column().classes('w-full h-full items-center justify-center'):
                        ui.icon('visibility', size='xl', color='grey-5')
                        ui.label('The PDF preview will appear here').classes('text-grey')
                    return
                data_url = f"data:application/pdf;base64,{base64.b64encode(self.pdf_bytes).decode('utf-8')}"
                ui.html(f'<iframe src="{data_url}" style="width: 100%; height: 100%; border: none;"></iframe>', sanitize=False).classes('h-full w-full')

        async def show_preview() -> None:
            preview_button.disable()
            try:
                pdf_bytes = await wizard.preview_pdf()
            finally:
                preview_button.enable()
            if pdf_bytes:
                self.pdf_bytes = pdf_bytes
                fill_preview()
            show_notice(wizard)

        async def submit() -> None:
            submit_button.disable()
            back_button.disable()
            try:
                outcome = await wizard.submit()
            finally:
                submit_button.enable()
                back_button.enable()
            if outcome is None:
                show_notice(wizard)
                return
            show_notice(wizard)
            ui.navigate.to(f'/success/{outcome.application_id}')

        fill_preview()
        with ui.row().classes('w-full q-mt-md justify-between items-center'):
            back_button = ui.button('← Back & Edit', on_click=self._handle_back).props('flat color=grey')
            with ui.row().classes('items-center no-wrap q-gutter-md'):
                preview_button = ui.button('Preview PDF', on_click=show_preview)
                preview_button.props('color=grey-8 outline icon=visibility')
                submit_button = ui.button('Submit Application', on_click=submit)
                submit_button.props('color=primary unelevated icon=send')

    @ui.refreshable
    def content(self) -> None:
        step_def = self.wizard.current_step_def
        with ui.row().classes('w-full items-center q-mb-md'):
            sequence = self.wizard.config.step_sequence
            if step_def['id'] in sequence:
                ui.linear_progress(value=(sequence.index(step_def['id']) + 1) / len(sequence),
                                   show_value=False).classes('col')
        if step_def['name'] == 'verification':
            self.render_verification_step(step_def)
        elif step_def['name'] == 'preview':
            self.render_preview_step(step_def)
        elif step_def['name'] == 'submitted':
            ui.label('Your application has been submitted.').classes('text-h6')
        else:
            self.render_generic_step(step_def)

# ===================================================================
# 5. PAGE ROUTING
# ===================================================================

def _page_header(title: str) -> None:
    ui.query('body').style('background-color: #f0f2f5;')
    with ui.header(elevated=True).classes('bg-primary text-white q-pa-sm items-center'):
        ui.label(title).classes('text-h5')
        ui.space()
        ui.button('Home', on_click=lambda: ui.navigate.to('/'), color='white', icon='home').props('flat dense')

def begin_application(role: Role) -> None:
    """A role card always opens a fresh application, so any stored session is dropped first."""
    DraftStore(app.storage.user).clear()
    ui.navigate.to(f'/apply/{role.value}')

@ui.page('/')
def main_page() -> None:
    settings = get_settings()
    _page_header(f"{settings.institution_code} – ID Card Reissue")
    with ui.column().classes('w-full items-center q-pa-lg'):
        ui.label('Who are you applying as?').classes('text-h6')
        with ui.row().classes('q-gutter-md justify-center'):
            for role, icon, hint in ROLE_CARDS:
                with ui.card().classes('q-pa-md items-center cursor-pointer').on(
                        'click', lambda _, r=role: begin_application(r)):
                    ui.icon(icon, size='xl', color='primary')
                    ui.label(role.value.capitalize()).classes('text-h6')
                    ui.label(hint).classes('text-caption text-grey')

@ui.page('/apply/{role_name}')
async def apply_page(role_name: str) -> None:
    try:
        role = Role(role_name)
    except ValueError:
        ui.navigate.to('/')
        return

    wizard = build_wizard(role)
    await wizard.enter()

    _page_header(FLOW_TEMPLATE_REGISTRY[wizard.config.role]['name'])
    view = WizardView(wizard)
    with ui.column().classes('w-full items-center q-pa-md'):
        with ui.card().classes('q-pa-md shadow-4').style('width: 95%; max-width: 900px;'):
            with ui.column().classes('w-full'):
                view.content()

@ui.page('/success/{application_id}')
def success_page(application_id: str) -> None:
    _page_header('Application Submitted')
    with ui.card().classes('absolute-center q-pa-lg items-center'):
        ui.icon('check_circle', size='xl', color='positive')
        ui.label('Your application has been submitted successfully.').classes('text-h6')
        ui.label(f"Application ID: {application_id}").classes('text-body1 text-bold')
        ui.label('Keep this ID for tracking your request.').classes('text-caption text-grey')
        ui.button('Back to Home', on_click=lambda: ui.navigate.to('/')).props('color=primary unelevated')

if __name__ in {"__main__", "__mp_main__"}:
    # Fails fast when IDCARD_FILE_POLICY (or any other setting) is invalid.
    startup_settings = get_settings()
    ui.run(
        host='0.0.0.0',
        port=startup_settings.port,
        title='ID Card Reissue',
        storage_secret=startup_settings.storage_secret,
    )
