from flask import Blueprint

bp = Blueprint('dashboard', __name__, url_prefix='/api/reports')

from . import dashboard, views_advanced, views_presets, views_supplier_per
