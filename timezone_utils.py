from datetime import datetime, date, timedelta
import pytz

# Fleet operations run on Indian Standard Time; the database stores naive IST
IST = pytz.timezone('Asia/Kolkata')

def get_ist_time_naive():
    """Get current IST time as naive datetime for database storage"""
    return datetime.now(IST).replace(tzinfo=None)

def get_ist_today():
    """Get today's date in IST"""
    return get_ist_time_naive().date()

def week_start_for(day: date) -> date:
    """Monday of the week containing day."""
    return day - timedelta(days=day.weekday())

def week_bounds(day: date):
    """(Monday, Sunday) of the settlement week containing day."""
    start = week_start_for(day)
    return start, start + timedelta(days=6)
