"""Database models"""
from mfgplan.models.product import Product, UnitOfMeasure, ProductUomConversion
from mfgplan.models.bom import BOM, BOMLine
from mfgplan.models.inventory import Inventory, InventoryLocation
from mfgplan.models.sales_order import SalesOrder, SalesOrderLine
from mfgplan.models.purchase_order import PurchaseOrder, PurchaseOrderLine
from mfgplan.models.production_order import ProductionOrder, ProductionOrderOperation
from mfgplan.models.work_center import WorkCenter, WorkCenterCalendar
from mfgplan.models.manufacturing import Routing, RoutingOperation
from mfgplan.models.mrp import MRPRun, MRPRecommendation, MRPChangeLog

__all__ = [
    # Item management
    "Product",
    "UnitOfMeasure",
    "ProductUomConversion",
    # Manufacturing
    "BOM",
    "BOMLine",
    # Inventory
    "Inventory",
    "InventoryLocation",
    # Sales
    "SalesOrder",
    "SalesOrderLine",
    # Purchasing
    "PurchaseOrder",
    "PurchaseOrderLine",
    # Production
    "ProductionOrder",
    "ProductionOrderOperation",
    # Capacity
    "WorkCenter",
    "WorkCenterCalendar",
    "Routing",
    "RoutingOperation",
    # MRP
    "MRPRun",
    "MRPRecommendation",
    "MRPChangeLog",
]
