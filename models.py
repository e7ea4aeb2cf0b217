from sqlalchemy import (create_engine, event,
                        Column, Integer, String, Float, Text, DateTime, Boolean,
                        ForeignKey, UniqueConstraint)
import urllib.parse
import json
import logging
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.orm import sessionmaker, scoped_session
from sqlalchemy.pool import StaticPool
from datetime import datetime, date
from werkzeug.security import generate_password_hash
from config import Config

log = logging.getLogger(__name__)


def db_connection():
    if Config.SERVERNAME:
        DRIVER     = "ODBC Driver 17 for SQL Server"

        # Build the raw ODBC connection string
        odbc_str = (
            f"DRIVER={{{DRIVER}}};"
            f"SERVER={Config.SERVERNAME};"
            f"DATABASE={Config.DATABASE};"
            f"UID={Config.USERNAME};"
            f"PWD={Config.PSSWD};"
            f"MARS_Connection=Yes"
        )
        connect_arg = urllib.parse.quote_plus(odbc_str)

        return create_engine(
            f"mssql+pyodbc:///?odbc_connect={connect_arg}",
            pool_size=30,
            max_overflow=10,
            pool_timeout=30,
            pool_pre_ping=True,
            fast_executemany=True,
            pool_recycle=3600
        )

    url = Config.DATABASE_URL
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # in-memory databases live on a single connection
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)

    return create_engine(url, pool_pre_ping=True, pool_recycle=3600)

engine = db_connection()

Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
model = scoped_session(Session)
Base = declarative_base()


@event.listens_for(engine, "connect")
def _sqlite_foreign_keys(dbapi_connection, connection_record):
    if engine.dialect.name == "sqlite":
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _iso(value):
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


class Users(Base):
    __tablename__ = 'Users'

    UserID      = Column(Integer, primary_key=True, autoincrement=True)
    Username    = Column(String(100), nullable=False, unique=True)
    Password    = Column(String(255), nullable=False)
    Role        = Column(String(20), nullable=False, default="user")
    Email       = Column(String(100), nullable=True)
    Fullname    = Column(String(200), nullable=True)
    CreatedAt   = Column(DateTime, default=datetime.utcnow)

    def as_dict(self):
        return {
            "id":       self.UserID,
            "username": self.Username,
            "email":    self.Email,
            "fullName": self.Fullname,
            "role":     self.Role,
        }


class SCM_Shipment(Base):
    __tablename__ = 'SCM_Shipment'

    ShipmentID          = Column(String(64), primary_key=True)
    Supplier            = Column(String(200), nullable=False)
    OrderRef            = Column(String(200), nullable=True)
    FinalPod            = Column(String(100), nullable=True)
    LatestStatus        = Column(String(50), nullable=False, default="planned_airfreight")
    WeekNumber          = Column(Integer, nullable=True)
    ProductName         = Column(String(300), nullable=True)
    Quantity            = Column(Float, nullable=True)
    Cbm                 = Column(Float, nullable=True)
    PalletQty           = Column(Float, nullable=True)
    ReceivingWarehouse  = Column(String(100), nullable=True)
    Notes               = Column(Text, nullable=True)
    ForwardingAgent     = Column(String(100), nullable=True)
    Incoterm            = Column(String(10), nullable=True)
    VesselName          = Column(String(100), nullable=True)
    Priority            = Column(String(10), nullable=True)
    SelectedWeekDate    = Column(DateTime, nullable=True)
    CreatedAt           = Column(DateTime, default=datetime.utcnow)
    UpdatedAt           = Column(DateTime, default=datetime.utcnow)

    # post-arrival workflow
    UnloadingStartDate      = Column(DateTime, nullable=True)
    UnloadingCompletedDate  = Column(DateTime, nullable=True)
    InspectionDate          = Column(DateTime, nullable=True)
    InspectionStatus        = Column(String(20), nullable=True)
    InspectionNotes         = Column(Text, nullable=True)
    InspectedBy             = Column(String(100), nullable=True)
    ReceivingDate           = Column(DateTime, nullable=True)
    ReceivingStatus         = Column(String(20), nullable=True)
    ReceivingNotes          = Column(Text, nullable=True)
    ReceivedBy              = Column(String(100), nullable=True)
    ReceivedQuantity        = Column(Float, nullable=True)
    Discrepancies           = Column(Text, nullable=True)    # JSON list

    # rejection
    RejectionDate       = Column(DateTime, nullable=True)
    RejectionReason     = Column(Text, nullable=True)
    RejectedBy          = Column(String(100), nullable=True)

    def as_dict(self):
        out = {}
        for key, attr in SHIPMENT_FIELDS.items():
            out[key] = _iso(getattr(self, attr))
        out["discrepancies"] = json.loads(self.Discrepancies) if self.Discrepancies else []
        return out


# API key -> column attribute
SHIPMENT_FIELDS = {
    "id":                     "ShipmentID",
    "supplier":               "Supplier",
    "orderRef":               "OrderRef",
    "finalPod":               "FinalPod",
    "latestStatus":           "LatestStatus",
    "weekNumber":             "WeekNumber",
    "productName":            "ProductName",
    "quantity":               "Quantity",
    "cbm":                    "Cbm",
    "palletQty":              "PalletQty",
    "receivingWarehouse":     "ReceivingWarehouse",
    "notes":                  "Notes",
    "forwardingAgent":        "ForwardingAgent",
    "incoterm":               "Incoterm",
    "vesselName":             "VesselName",
    "priority":               "Priority",
    "selectedWeekDate":       "SelectedWeekDate",
    "createdAt":              "CreatedAt",
    "updatedAt":              "UpdatedAt",
    "unloadingStartDate":     "UnloadingStartDate",
    "unloadingCompletedDate": "UnloadingCompletedDate",
    "inspectionDate":         "InspectionDate",
    "inspectionStatus":       "InspectionStatus",
    "inspectionNotes":        "InspectionNotes",
    "inspectedBy":            "InspectedBy",
    "receivingDate":          "ReceivingDate",
    "receivingStatus":        "ReceivingStatus",
    "receivingNotes":         "ReceivingNotes",
    "receivedBy":             "ReceivedBy",
    "receivedQuantity":       "ReceivedQuantity",
    "discrepancies":          "Discrepancies",
    "rejectionDate":          "RejectionDate",
    "rejectionReason":        "RejectionReason",
    "rejectedBy":             "RejectedBy",
}


class SCM_WarehouseCapacity(Base):
    __tablename__ = 'SCM_WarehouseCapacity'

    ID              = Column(Integer, primary_key=True, autoincrement=True)
    WarehouseName   = Column(String(100), nullable=False, unique=True)
    TotalCapacity   = Column(Integer, nullable=True)
    BinsUsed        = Column(Integer, nullable=False, default=0)
    UpdatedAt       = Column(DateTime, default=datetime.utcnow)
    UpdatedBy       = Column(Integer, ForeignKey('Users.UserID'), nullable=True)


class SCM_WarehouseCapacityHistory(Base):
    __tablename__ = 'SCM_WarehouseCapacityHistory'

    ID              = Column(Integer, primary_key=True, autoincrement=True)
    WarehouseName   = Column(String(100), nullable=False)
    BinsUsed        = Column(Integer, nullable=False)
    PreviousValue   = Column(Integer, nullable=True)
    ChangedAt       = Column(DateTime, default=datetime.utcnow)
    ChangedBy       = Column(Integer, ForeignKey('Users.UserID'), nullable=True)

    user = relationship('Users')

    def as_dict(self):
        return {
            "id":            self.ID,
            "warehouseName": self.WarehouseName,
            "binsUsed":      self.BinsUsed,
            "previousValue": self.PreviousValue,
            "changedAt":     _iso(self.ChangedAt),
            "changedBy": {
                "username": self.user.Username if self.user else None,
                "fullName": self.user.Fullname if self.user else None,
            },
        }


class SCM_NotificationPreferences(Base):
    __tablename__ = 'SCM_NotificationPreferences'

    ID                          = Column(Integer, primary_key=True, autoincrement=True)
    UserID                      = Column(Integer, ForeignKey('Users.UserID', ondelete="CASCADE"),
                                         nullable=False, unique=True)
    notify_shipment_arrival     = Column(Boolean, default=True)
    notify_inspection_failed    = Column(Boolean, default=True)
    notify_inspection_passed    = Column(Boolean, default=True)
    notify_warehouse_capacity   = Column(Boolean, default=True)
    notify_delayed_shipment     = Column(Boolean, default=True)
    notify_post_arrival_update  = Column(Boolean, default=True)
    notify_workflow_assigned    = Column(Boolean, default=True)
    email_enabled               = Column(Boolean, default=True)
    email_frequency             = Column(String(20), default="immediate")
    email_address               = Column(String(255), nullable=True)
    UpdatedAt                   = Column(DateTime, default=datetime.utcnow)


class SCM_NotificationLog(Base):
    __tablename__ = 'SCM_NotificationLog'

    ID              = Column(Integer, primary_key=True, autoincrement=True)
    UserID          = Column(Integer, ForeignKey('Users.UserID', ondelete="CASCADE"), nullable=False)
    EventType       = Column(String(50), nullable=False)
    ShipmentID      = Column(String(64), nullable=True)
    Subject         = Column(String(255), nullable=True)
    Message         = Column(Text, nullable=True)
    Status          = Column(String(20), default="sent")
    DeliveryMethod  = Column(String(20), default="email")
    SentAt          = Column(DateTime, default=datetime.utcnow)
    ErrorMessage    = Column(Text, nullable=True)

    def as_dict(self):
        return {
            "id":             self.ID,
            "eventType":      self.EventType,
            "shipmentId":     self.ShipmentID,
            "subject":        self.Subject,
            "message":        self.Message,
            "status":         self.Status,
            "deliveryMethod": self.DeliveryMethod,
            "sentAt":         _iso(self.SentAt),
            "errorMessage":   self.ErrorMessage,
        }


class SCM_NotificationDigestQueue(Base):
    __tablename__ = 'SCM_NotificationDigestQueue'

    ID          = Column(Integer, primary_key=True, autoincrement=True)
    UserID      = Column(Integer, ForeignKey('Users.UserID', ondelete="CASCADE"), nullable=False)
    EventType   = Column(String(50), nullable=False)
    ShipmentID  = Column(String(64), nullable=True)
    EventData   = Column(Text, nullable=True)
    CreatedAt   = Column(DateTime, default=datetime.utcnow)
    SentAt      = Column(DateTime, nullable=True)


class SCM_Settings(Base):
    __tablename__ = 'SCM_Settings'
    __table_args__ = (UniqueConstraint('UserID', 'SettingKey'),)

    SettingID   = Column(Integer, primary_key=True, autoincrement=True)
    UserID      = Column(String(100), nullable=True)
    SettingKey  = Column(String(100), nullable=False)
    SettingValue= Column(Text, nullable=False)


def init_db():
    """Create tables, seed default warehouses and the bootstrap admin."""
    Base.metadata.create_all(engine)

    existing = {name for (name,) in model.query(SCM_WarehouseCapacity.WarehouseName).all()}
    for name, bins in Config.WAREHOUSE_CAPACITY.items():
        if name not in existing:
            model.add(SCM_WarehouseCapacity(WarehouseName=name, TotalCapacity=bins, BinsUsed=0))

    if Config.ADMIN_USERNAME and Config.ADMIN_PASSWORD:
        if not model.query(Users).filter_by(Username=Config.ADMIN_USERNAME).first():
            log.info("Creating bootstrap admin %s", Config.ADMIN_USERNAME)
            model.add(Users(
                Username=Config.ADMIN_USERNAME,
                Password=generate_password_hash(Config.ADMIN_PASSWORD),
                Role="admin",
            ))
    model.commit()
