import json

US_URL = (
    "https://shop.lululemon.com/p/men-ss-tops/Metal-Vent-Tech-Short-Sleeve-Shirt-3/_/"
    "prod11710026?color=69702&sz=M"
)
US_MD_URL = (
    "https://shop.lululemon.com/p/men-ss-tops/Metal-Vent-Tech-Short-Sleeve-Shirt-3-MD/_/"
    "prod11710026?color=69702&sz=M"
)
HK_URL = (
    "https://www.lululemon.com.hk/en-hk/p/metal-vent-tech-short-sleeve-shirt/"
    "prod11710026.html?dwvar_prod11710026_color=069299"
)


def sku(color_code, size, available=True, list_price="78", sale_price=None):
    price = {"listPrice": list_price}
    if sale_price is not None:
        price["salePrice"] = sale_price
    return {
        "color": {"code": color_code},
        "size": size,
        "available": available,
        "price": price,
    }


def catalog_html(
    skus,
    colors,
    product_id="prod11710026",
    unified_id="Metal-Vent-Tech-Short-Sleeve-Shirt-3",
    parent_category="men-ss-tops",
    is_sold_out=False,
    color_driver=None,
    body="",
):
    data = {
        "props": {
            "pageProps": {
                "dehydratedState": {
                    "queries": [
                        {"state": {"data": {"navigation": []}}},
                        {
                            "state": {
                                "data": {
                                    "productSummary": {
                                        "productId": product_id,
                                        "displayName": "Metal Vent Tech Short-Sleeve Shirt",
                                        "unifiedId": unified_id,
                                        "parentCategoryUnifiedId": parent_category,
                                        "isSoldOut": is_sold_out,
                                    },
                                    "skus": skus,
                                    "colors": [
                                        {"code": code, "name": name} for code, name in colors
                                    ],
                                    "colorDriver": color_driver or [],
                                }
                            }
                        },
                    ]
                }
            }
        }
    }
    return (
        "<html><head>"
        '<meta property="og:image" content="https://images.example.com/shirt.jpg">'
        f'<script id="__NEXT_DATA__" type="application/json">{json.dumps(data)}</script>'
        "</head><body><h1>Metal Vent Tech Short-Sleeve Shirt</h1>"
        f"{body}</body></html>"
    )


def variant(color, size, price="590", in_stock=True):
    availability = "https://schema.org/InStock" if in_stock else "https://schema.org/OutOfStock"
    return {
        "@type": "Product",
        "color": color,
        "size": size,
        "offers": {"@type": "Offer", "price": price, "availability": availability},
    }


def product_group_html(variants, name="Metal Vent Tech Short-Sleeve Shirt", body=""):
    group = {
        "@context": "https://schema.org",
        "@type": "ProductGroup",
        "name": name,
        "productGroupID": "prod11710026",
        "hasVariant": variants,
    }
    return (
        "<html><head>"
        '<script type="application/ld+json">{"@type": "BreadcrumbList", </script>'
        f'<script type="application/ld+json">{json.dumps(group)}</script>'
        f"</head><body>{body}</body></html>"
    )
