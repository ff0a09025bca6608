from flask_wtf import FlaskForm
from wtforms import StringField, PasswordField, BooleanField, SelectField, FloatField, IntegerField, DateField, TextAreaField
from wtforms.validators import DataRequired, Length, Optional, NumberRange, ValidationError
from models import Shift, AdjustmentCategory, PenaltyTransactionType, BalanceTransactionType

SHIFT_CHOICES = [(shift.value, shift.value) for shift in Shift]
REPORT_SHIFT_CHOICES = [(shift.value, shift.value) for shift in Shift if shift != Shift.NONE]
ADJUSTMENT_CATEGORY_CHOICES = [(category.value, category.value.replace('_', ' ').title()) for category in AdjustmentCategory]
PENALTY_TYPE_CHOICES = [(tx_type.value, tx_type.value.replace('_', ' ').title()) for tx_type in PenaltyTransactionType]
BALANCE_TYPE_CHOICES = [(tx_type.value, tx_type.value.title()) for tx_type in BalanceTransactionType]


class JSONForm(FlaskForm):
    """Forms fed from JSON bodies; CSRF is enforced app-wide by CSRFProtect."""
    class Meta:
        csrf = False


def form_errors(form):
    """Flatten WTForms errors into one message."""
    messages = []
    for field, errors in form.errors.items():
        label = getattr(form, field).label.text if hasattr(form, field) else field
        for error in errors:
            messages.append(f"{label}: {error}" if not isinstance(error, dict) else f"{label}: invalid")
    return '; '.join(messages)


class LoginForm(JSONForm):
    username = StringField('Username', validators=[DataRequired()])
    password = PasswordField('Password', validators=[DataRequired()])
    remember_me = BooleanField('Remember Me')


class ReportSubmissionForm(JSONForm):
    rent_date = DateField('Rent Date', validators=[DataRequired()])
    shift = SelectField('Shift', choices=[('', '')] + REPORT_SHIFT_CHOICES, default='', validators=[Optional()])
    vehicle_number = StringField('Vehicle Number', validators=[Optional(), Length(max=20)])
    # NumberRange also rejects a missing value; DataRequired would reject a legitimate zero
    total_trips = IntegerField('Total Trips', validators=[NumberRange(min=0, message='Total trips is required and cannot be negative')])
    total_earnings = FloatField('Total Earnings', validators=[Optional(), NumberRange(min=0)], default=0)
    toll = FloatField('Toll', validators=[Optional(), NumberRange(min=0)], default=0)
    total_cashcollect = FloatField('Cash Collected', validators=[Optional(), NumberRange(min=0)], default=0)
    other_fee = FloatField('Other Fee', validators=[Optional(), NumberRange(min=0)], default=0)
    deposit_cutting_amount = FloatField('Deposit Cutting', validators=[Optional(), NumberRange(min=0)], default=0)
    is_service_day = BooleanField('Service Day')
    remarks = TextAreaField('Remarks', validators=[Optional(), Length(max=1000)])


class ReportEditForm(JSONForm):
    rent_date = DateField('Rent Date', validators=[Optional()])
    shift = SelectField('Shift', choices=[('', '')] + REPORT_SHIFT_CHOICES, default='', validators=[Optional()])
    vehicle_number = StringField('Vehicle Number', validators=[Optional(), Length(max=20)])
    total_trips = IntegerField('Total Trips', validators=[Optional(), NumberRange(min=0)])
    total_earnings = FloatField('Total Earnings', validators=[Optional(), NumberRange(min=0)])
    toll = FloatField('Toll', validators=[Optional(), NumberRange(min=0)])
    total_cashcollect = FloatField('Cash Collected', validators=[Optional(), NumberRange(min=0)])
    other_fee = FloatField('Other Fee', validators=[Optional(), NumberRange(min=0)])
    deposit_cutting_amount = FloatField('Deposit Cutting', validators=[Optional(), NumberRange(min=0)])
    remarks = TextAreaField('Remarks', validators=[Optional(), Length(max=1000)])


class AdjustmentForm(JSONForm):
    user_id = IntegerField('Driver', validators=[DataRequired()])
    adjustment_date = DateField('Date', validators=[DataRequired()])
    category = SelectField('Category', choices=ADJUSTMENT_CATEGORY_CHOICES, validators=[DataRequired()])
    amount = FloatField('Amount')
    description = TextAreaField('Description', validators=[DataRequired(), Length(max=500)])
    vehicle_number = StringField('Vehicle Number', validators=[Optional(), Length(max=20)])

    def validate_amount(self, field):
        if field.data is None and self.category.data != AdjustmentCategory.SERVICE_DAY.value:
            raise ValidationError('Amount is required')
        if field.data is not None and field.data == 0:
            raise ValidationError('Amount cannot be zero')


class PenaltyTransactionForm(JSONForm):
    user_id = IntegerField('Driver', validators=[DataRequired()])
    transaction_type = SelectField('Type', choices=PENALTY_TYPE_CHOICES, validators=[DataRequired()])
    amount = FloatField('Amount', validators=[DataRequired(), NumberRange(min=0.01)])
    description = TextAreaField('Description', validators=[Optional(), Length(max=500)])
    penalty_date = DateField('Penalty Date', validators=[Optional()])


class BalanceTransactionForm(JSONForm):
    user_id = IntegerField('Driver', validators=[DataRequired()])
    transaction_type = SelectField('Type', choices=BALANCE_TYPE_CHOICES, validators=[DataRequired()])
    amount = FloatField('Amount', validators=[DataRequired(), NumberRange(min=0.01)])
    description = TextAreaField('Description', validators=[Optional(), Length(max=500)])


class DriverStatusForm(JSONForm):
    action = SelectField('Action', choices=[('offline', 'Offline'), ('leave', 'Leave'),
                                            ('resigning', 'Resigning'), ('online', 'Online')],
                         validators=[DataRequired()])
    return_date = DateField('Return Date', validators=[Optional()])
    resigning_date = DateField('Resigning Date', validators=[Optional()])
    reason = TextAreaField('Reason', validators=[Length(max=1000)])
    shift = SelectField('Shift', choices=[('', '')] + SHIFT_CHOICES, default='', validators=[Optional()])
    vehicle_number = StringField('Vehicle Number', validators=[Optional(), Length(max=20)])

    def validate_reason(self, field):
        if self.action.data == 'resigning' and not (field.data or '').strip():
            raise ValidationError('Resignation reason is required')

